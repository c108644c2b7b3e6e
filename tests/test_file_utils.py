"""Tests for cache filesystem helpers."""

import os

from pahe_gateway.utils.file_utils import count_segments, resolve_inside


def test_count_segments_counts_extinf_directives(tmp_path):
    playlist = tmp_path / "stream.m3u8"
    playlist.write_text("#EXTM3U\n#EXTINF:3.0,\na.m4s\n#EXTINF:3.0,\nb.m4s\n#EXT-X-ENDLIST\n")
    assert count_segments(str(playlist)) == 2
    assert count_segments(str(tmp_path / "missing.m3u8")) == 0


def test_resolve_inside_rejects_escapes(tmp_path):
    root = str(tmp_path)
    assert resolve_inside(root, "abc/master.m3u8") == os.path.join(os.path.realpath(root), "abc", "master.m3u8")
    assert resolve_inside(root, "/abc/master.m3u8") == os.path.join(os.path.realpath(root), "abc", "master.m3u8")
    assert resolve_inside(root, "../etc/passwd") is None
    assert resolve_inside(root, "abc/../../x") is None
