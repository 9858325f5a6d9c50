"""
CrawlOptions 单元测试
"""
import unittest

from pydantic import ValidationError

from config import CrawlerConfig, ProxyConfig
from core.options import CrawlOptions


class TestCrawlOptionsDefaults(unittest.TestCase):
    def test_defaults(self):
        options = CrawlOptions()
        self.assertEqual(options.max_depth, 2)
        self.assertEqual(options.max_pages, 50)
        self.assertEqual(options.category_mode, "path")
        self.assertEqual(options.allowed_extensions, frozenset({"jpg", "jpeg", "png", "gif", "webp"}))
        self.assertEqual(options.max_image_size_bytes, 10240 * 1024)
        self.assertTrue(options.detect_duplicates)
        self.assertFalse(options.respect_robots)
        self.assertEqual(options.request_timeout, 10.0)

    def test_immutable(self):
        options = CrawlOptions()
        with self.assertRaises(ValidationError):
            options.max_depth = 5


class TestCrawlOptionsValidation(unittest.TestCase):
    def test_rejects_unknown_keys(self):
        with self.assertRaises(ValidationError):
            CrawlOptions.from_mapping({"maxDepth": 1, "bogus": True})

    def test_rejects_invalid_values(self):
        invalid = [
            {"max_depth": -1},
            {"max_pages": 0},
            {"category_mode": "color"},
            {"jpeg_quality": 0},
            {"jpeg_quality": 101},
            {"concurrent_requests": 0},
            {"allowed_extensions": []},
            {"user_agent": ""},
        ]
        for data in invalid:
            with self.subTest(data=data):
                with self.assertRaises(ValidationError):
                    CrawlOptions.from_mapping(data)

    def test_camel_case_keys(self):
        options = CrawlOptions.from_mapping({"maxDepth": 0, "categoryMode": "domain", "minWidth": 10})
        self.assertEqual(options.max_depth, 0)
        self.assertEqual(options.category_mode, "domain")
        self.assertEqual(options.min_width, 10)

    def test_extensions_normalized(self):
        options = CrawlOptions(allowed_extensions=[".JPG", "png ", "Gif"])
        self.assertEqual(options.allowed_extensions, frozenset({"jpg", "png", "gif"}))
        options = CrawlOptions(allowed_extensions="jpg, webp")
        self.assertEqual(options.allowed_extensions, frozenset({"jpg", "webp"}))


class TestCrawlOptionsConversion(unittest.TestCase):
    def test_from_config(self):
        crawler_config = CrawlerConfig(max_depth=4, max_image_size_kb=100)
        options = CrawlOptions.from_config(crawler_config, ProxyConfig(use_proxy=True), max_pages=7, min_width=None)
        self.assertEqual(options.max_depth, 4)
        self.assertEqual(options.max_pages, 7)
        self.assertEqual(options.min_width, 100)
        self.assertEqual(options.max_image_size_bytes, 100 * 1024)
        self.assertTrue(options.use_proxy)

    def test_dict_round_trip(self):
        options = CrawlOptions(max_depth=1, allowed_extensions=["png", "jpg"], category_mode="page")
        data = options.to_dict()
        self.assertEqual(data["allowed_extensions"], ["jpg", "png"])
        self.assertEqual(CrawlOptions.from_mapping(data), options)


if __name__ == "__main__":
    unittest.main()
