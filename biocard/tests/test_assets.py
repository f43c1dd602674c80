import base64
import io
import unittest

from PIL import Image

from biocard.assets import (
    AssetKind,
    ImageAsset,
    RemoteAsset,
    TextAsset,
    asset_from_columns,
    asset_to_string,
    detect_mime_type,
    optional_asset,
    parse_asset,
)


def _png_bytes() -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (2, 2), color=(255, 0, 0)).save(buffer, format="PNG")
    return buffer.getvalue()


class AssetTests(unittest.TestCase):
    def test_parse_kinds(self):
        self.assertEqual(parse_asset("🙂"), TextAsset("🙂"))
        self.assertEqual(parse_asset("https://example.com/a.png"), RemoteAsset("https://example.com/a.png"))
        self.assertEqual(parse_asset(""), TextAsset())
        self.assertEqual(parse_asset(None), TextAsset())

        png = _png_bytes()
        uri = "data:image/png;base64," + base64.b64encode(png).decode("ascii")
        self.assertEqual(parse_asset(uri), ImageAsset(png))

    def test_bad_data_uri_falls_back_to_text(self):
        value = "data:image/png;base64,@@not-base64@@"
        self.assertEqual(parse_asset(value), TextAsset(value))

    def test_round_trip_each_kind(self):
        for asset in (
            TextAsset("👤"),
            RemoteAsset("http://example.com/logo.svg"),
            ImageAsset(_png_bytes()),
        ):
            rebuilt = parse_asset(asset_to_string(asset))
            self.assertEqual(rebuilt.columns, asset.columns)

    def test_image_string_uses_sniffed_mime(self):
        text = asset_to_string(ImageAsset(_png_bytes()))
        self.assertTrue(text.startswith("data:image/png;base64,"))

    def test_detect_mime_type(self):
        buffer = io.BytesIO()
        Image.new("RGB", (1, 1)).save(buffer, format="JPEG")
        self.assertEqual(detect_mime_type(buffer.getvalue()), "image/jpeg")
        self.assertEqual(
            detect_mime_type(b'<?xml version="1.0"?><svg xmlns="http://www.w3.org/2000/svg"/>'),
            "image/svg+xml",
        )
        self.assertEqual(detect_mime_type(b"\x00\x01garbage"), "image/png")

    def test_columns(self):
        self.assertIsNone(asset_from_columns(None, None, None))
        self.assertEqual(asset_from_columns("remote", "https://x.y", None), RemoteAsset("https://x.y"))
        self.assertEqual(ImageAsset(b"abc").columns, (AssetKind.IMAGE, None, b"abc"))
        self.assertIsNone(optional_asset(""))
        self.assertEqual(asset_to_string(None), "")


if __name__ == "__main__":
    unittest.main()
