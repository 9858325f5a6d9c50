"""
数据模型 单元测试
"""
import json
import unittest
from datetime import datetime, timedelta

from pydantic import ValidationError

from core.models import CategoryStats, CrawlReport, DownloadStatus, ImageRecord


def record(url, page_url="https://example.com/a", category="a", width=200, height=100, size=1000):
    return ImageRecord(
        url=url,
        page_url=page_url,
        category=category,
        filename=url.rsplit("/", 1)[-1],
        width=width,
        height=height,
        size_bytes=size,
        extension="png",
    )


class TestCategoryStats(unittest.TestCase):
    def test_from_records(self):
        stats = CategoryStats.from_records([
            record("https://example.com/1.png", width=100, height=50, size=100),
            record("https://example.com/2.png", width=300, height=150, size=300, page_url="https://example.com/b"),
            record("https://example.com/3.png", width=200, height=100, size=200),
        ])
        self.assertEqual(stats.count, 3)
        self.assertEqual(stats.total_size_bytes, 600)
        self.assertEqual(stats.avg_width, 200)
        self.assertEqual(stats.avg_height, 100)
        self.assertEqual(stats.page_count, 2)

    def test_empty(self):
        self.assertEqual(CategoryStats.from_records([]).count, 0)


class TestCrawlReport(unittest.TestCase):
    def setUp(self):
        started = datetime(2024, 1, 1, 12, 0, 0)
        self.report = CrawlReport.build(
            start_url="https://example.com/",
            registry={
                "a": [record("https://example.com/1.png"), record("https://example.com/2.png")],
                "b": [record("https://example.com/3.png", category="b")],
            },
            stats={"discovered": 6, "duplicates": 1, "filtered": 1, "failed": 1, "pages_failed": 0},
            pages_visited=2,
            started_at=started,
            finished_at=started + timedelta(seconds=3.5),
        )

    def test_build(self):
        self.assertEqual(self.report.total_images, 3)
        self.assertEqual(self.report.discovered, 6)
        self.assertEqual(self.report.elapsed_seconds, 3.5)
        self.assertEqual(self.report.categories["a"].count, 2)
        self.assertEqual(len(self.report.all_images()), 3)
        self.assertEqual(self.report.all_images()[0].download_status, DownloadStatus.PENDING)

    def test_frozen(self):
        with self.assertRaises(ValidationError):
            self.report.total_images = 10

    def test_json_round_trip(self):
        data = json.loads(json.dumps(self.report.to_dict()))
        restored = CrawlReport.from_dict(data)
        self.assertEqual(restored, self.report)
        self.assertEqual(data["images_by_category"]["a"][0]["download_status"], "pending")


if __name__ == "__main__":
    unittest.main()
