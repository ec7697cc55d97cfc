"""Builders for YouTube-style Atom feeds used across the tests."""

from models import Source

CHANNEL_ID = "UCabcdefghijklmnopqrstuv"

FEED_HEADER = (
    '<?xml version="1.0" encoding="UTF-8"?>\n'
    '<feed xmlns:yt="http://www.youtube.com/xml/schemas/2015" '
    'xmlns:media="http://search.yahoo.com/mrss/" xmlns="http://www.w3.org/2005/Atom">\n'
    ' <link rel="self" href="http://www.youtube.com/feeds/videos.xml?channel_id={channel}"/>\n'
    ' <id>yt:channel:{channel}</id>\n'
    ' <yt:channelId>{channel}</yt:channelId>\n'
    ' <title>Sample Channel</title>\n'
)


def make_source(channel_id: str = CHANNEL_ID, name: str = "Sample Channel") -> Source:
    return Source(
        id=channel_id,
        name=name,
        url=f"https://www.youtube.com/feeds/videos.xml?channel_id={channel_id}",
    )


def build_entry(
    video_id: str,
    title: str = None,
    published: str = "2025-02-13T18:00:00+00:00",
    link: bool = True,
    thumbnail: bool = True,
) -> str:
    title = title if title is not None else f"Video {video_id}"
    parts = [" <entry>", f"  <id>yt:video:{video_id}</id>"]
    if video_id:
        parts.append(f"  <yt:videoId>{video_id}</yt:videoId>")
    parts.append(f"  <title>{title}</title>")
    if link:
        parts.append(f'  <link rel="alternate" href="https://www.youtube.com/watch?v={video_id}"/>')
    parts.append("  <author><name>Sample Channel</name></author>")
    if published:
        parts.append(f"  <published>{published}</published>")
    parts.append("  <media:group>")
    parts.append(f"   <media:title>{title}</media:title>")
    if thumbnail:
        parts.append(f'   <media:thumbnail url="https://i4.ytimg.com/vi/{video_id}/hqdefault.jpg" width="480" height="360"/>')
    parts.append("  </media:group>")
    parts.append(" </entry>")
    return "\n".join(parts)


def build_feed(*entries: str, channel_id: str = CHANNEL_ID) -> str:
    return FEED_HEADER.format(channel=channel_id) + "\n".join(entries) + "\n</feed>\n"


def feed_of(*video_ids: str, channel_id: str = CHANNEL_ID) -> str:
    """Feed listing the given ids in the order given (newest first by convention)."""
    return build_feed(*(build_entry(video_id) for video_id in video_ids), channel_id=channel_id)
