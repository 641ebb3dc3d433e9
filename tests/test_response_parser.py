import json
import unittest
from datetime import datetime, timezone

from IG_Reels_Scraper.src.models import InterceptedPacket, MediaType
from IG_Reels_Scraper.src.scraper_functions import response_parser

from fakes import reel_item


class ShapeParsingTest(unittest.TestCase):

    def ids(self, body):
        return [item.record.id for item in response_parser.parse_items(body)]

    def test_single_item_shape(self):
        body = {"data": {"xdt_shortcode_media": {"shortcode": "C1abc", "is_video": True}}}
        self.assertEqual(self.ids(body), ["C1abc"])

    def test_feed_connection_shape(self):
        body = {
            "data": {
                "xdt_api__v1__clips__home__connection_v2": {
                    "edges": [
                        {"node": {"media": reel_item("R1")}},
                        {"node": {"media": reel_item("R2")}},
                        {"node": {}},
                    ]
                }
            }
        }
        self.assertEqual(self.ids(body), ["R1", "R2"])

    def test_bare_item_array(self):
        self.assertEqual(self.ids([reel_item("A1"), "noise", reel_item("A2")]), ["A1", "A2"])
        self.assertEqual(self.ids({"items": [reel_item("B1")]}), ["B1"])

    def test_unrecognized_shape_uses_deep_search(self):
        body = {
            "data": {
                "brand_new_field": {
                    "wrapper": {
                        "media": {"__typename": "XDTMediaDict", "code": "D1", "product_type": "clips"}
                    }
                }
            }
        }
        self.assertEqual(self.ids(body), ["D1"])

    def test_deep_search_is_depth_bounded(self):
        nested = {"code": "TooDeep", "product_type": "clips"}
        for level in range(7):
            nested = {f"level{level}": nested}
        self.assertEqual(response_parser.find_item_objects(nested), [])

    def test_deep_search_ignores_non_video_objects(self):
        body = {"data": {"x": {"code": "Photo", "media_type": 1}}}
        self.assertEqual(self.ids(body), [])

    def test_anti_hijack_prefix_parses_identically(self):
        body = json.dumps({"items": [reel_item("P1", likes=42)]})
        plain = [item.record for item in response_parser.parse_items(body)]
        prefixed = [item.record for item in response_parser.parse_items("for (;;);" + body)]
        self.assertEqual(plain, prefixed)
        self.assertEqual(prefixed[0].likes, 42)

    def test_non_json_body_is_not_parsed(self):
        self.assertIsNone(response_parser.parse_items("<html>nope</html>"))
        self.assertIsNone(response_parser.parse_items(None))
        self.assertEqual(response_parser.parse_items(b'{"items": []}'), [])


class PacketFilterTest(unittest.TestCase):

    def test_only_post_data_queries_are_parsed(self):
        body = json.dumps({"items": [reel_item("Q1")]})
        post = InterceptedPacket("https://www.instagram.com/graphql/query", "POST", "application/json", body)
        get = InterceptedPacket("https://www.instagram.com/graphql/query", "GET", "application/json", body)
        other = InterceptedPacket("https://www.instagram.com/ajax/bz", "POST", "application/json", body)
        items = response_parser.parse_packet(post)
        self.assertEqual([item.record.id for item in items], ["Q1"])
        self.assertEqual(items[0].raw["code"], "Q1")
        self.assertIsNone(response_parser.parse_packet(get))
        self.assertIsNone(response_parser.parse_packet(other))

    def test_api_graphql_endpoint_is_a_data_query(self):
        packet = InterceptedPacket("https://www.instagram.com/api/graphql", "post", None, "{}")
        self.assertTrue(response_parser.is_data_query(packet))


class FieldExtractionTest(unittest.TestCase):

    def test_graphql_style_aliases(self):
        item = {
            "shortcode": "G1",
            "owner": {"username": "gina"},
            "edge_media_to_caption": {"edges": [{"node": {"text": "Hello #World"}}]},
            "edge_media_preview_like": {"count": 77},
            "edge_media_to_comment": {"count": 5},
            "video_view_count": 900,
            "taken_at_timestamp": 1700000000,
            "display_url": "https://cdn/thumb.jpg",
            "video_url": "https://cdn/video.mp4",
            "is_video": True,
        }
        record = response_parser.extract_item(item)
        self.assertEqual(record.id, "G1")
        self.assertEqual(record.author_handle, "gina")
        self.assertEqual(record.caption, "Hello #World")
        self.assertEqual((record.likes, record.comments, record.views), (77, 5, 900))
        self.assertEqual(record.created_at, datetime.fromtimestamp(1700000000, tz=timezone.utc))
        self.assertEqual(record.thumbnail_url, "https://cdn/thumb.jpg")
        self.assertEqual(record.video_url, "https://cdn/video.mp4")
        self.assertEqual(record.media_type, MediaType.VIDEO_REEL)
        self.assertEqual(record.tags, frozenset({"world"}))

    def test_pk_alone_is_not_an_id(self):
        self.assertIsNone(response_parser.extract_item({"pk": "123", "product_type": "clips"}))

    def test_missing_fields_stay_none(self):
        record = response_parser.extract_item({"code": "M1"})
        self.assertIsNone(record.likes)
        self.assertIsNone(record.author_handle)
        self.assertIsNone(record.media_type)

    def test_media_type_discriminator(self):
        self.assertEqual(response_parser.media_type_of({"product_type": "clips"}), MediaType.VIDEO_REEL)
        self.assertEqual(response_parser.media_type_of({"media_type": 1}), MediaType.OTHER)
        self.assertIsNone(response_parser.media_type_of({}))

    def test_count_coercion(self):
        self.assertEqual(response_parser.coerce_count("1,234"), 1234)
        self.assertEqual(response_parser.coerce_count(12.0), 12)
        self.assertIsNone(response_parser.coerce_count(True))
        self.assertIsNone(response_parser.coerce_count("many"))


if __name__ == '__main__':
    unittest.main()
