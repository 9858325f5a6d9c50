"""
CLI handlers 单元测试
"""
import argparse
import asyncio
import json
import shutil
import tempfile
import unittest
from datetime import datetime
from pathlib import Path
from unittest.mock import AsyncMock, patch

from cli.commands import create_parser
from cli.handlers import (
    build_options,
    handle_crawl,
    handle_crawl_batch,
    handle_proxies,
    load_urls,
    print_cluster_stats,
    print_proxy_stats,
    print_report,
    save_report,
)
from cluster.task import LookupStatus, TaskLookup
from core.errors import PolicyDenied
from core.models import CrawlReport, ImageRecord
from core.proxy_manager import ProxyManager


def make_report(url="https://example.com/"):
    now = datetime.now()
    image = ImageRecord(
        url="https://example.com/a.png",
        page_url=url,
        category="homepage",
        filename="a.png",
        width=200,
        height=150,
        size_bytes=2048,
        extension="png",
    )
    return CrawlReport.build(url, {"homepage": [image]}, {"discovered": 1}, pages_visited=1,
                             started_at=now, finished_at=now)


def cluster_stats():
    return {
        "master": {"pid": 1, "uptime": 0.0, "pool_size": 2},
        "workers": {"total": 2, "busy": 0, "idle": 2, "workers": []},
        "tasks": {"by_state": {"completed": 1}, "pending": 0},
        "stats": {"submitted": 1},
        "result_store": {"in_memory": 1, "stats": {}, "redis": None},
    }


class TestBuildOptions(unittest.TestCase):
    def test_cli_overrides(self):
        args = create_parser().parse_args([
            "crawl", "https://example.com", "--max-depth", "0", "--extensions", "PNG, .gif",
            "--max-size-kb", "5", "--rate-limit", "3", "--no-dedup",
        ])
        options = build_options(args)
        self.assertEqual(options.max_depth, 0)
        self.assertEqual(options.allowed_extensions, frozenset({"png", "gif"}))
        self.assertEqual(options.max_image_size_bytes, 5 * 1024)
        self.assertEqual(options.rate_limit_requests, 3)
        self.assertFalse(options.detect_duplicates)

    def test_unset_arguments_use_defaults(self):
        args = create_parser().parse_args(["crawl", "https://example.com"])
        options = build_options(args)
        self.assertTrue(options.detect_duplicates)
        self.assertIn("jpg", options.allowed_extensions)


class TestLoadUrls(unittest.TestCase):
    def setUp(self):
        self.test_dir = tempfile.mkdtemp()

    def tearDown(self):
        shutil.rmtree(self.test_dir, ignore_errors=True)

    def test_merge_file_and_positional(self):
        path = Path(self.test_dir) / "urls.txt"
        path.write_text("# 注释\nhttps://b.com\n\nhttps://a.com\n", encoding="utf-8")
        args = argparse.Namespace(urls=["https://a.com"], file=str(path))
        self.assertEqual(load_urls(args), ["https://a.com", "https://b.com"])

    def test_no_urls(self):
        self.assertEqual(load_urls(argparse.Namespace(urls=[], file=None)), [])


class TestOutput(unittest.TestCase):
    def test_save_report(self):
        test_dir = tempfile.mkdtemp()
        try:
            path = Path(test_dir) / "nested" / "report.json"
            save_report(make_report(), path)
            data = json.loads(path.read_text(encoding="utf-8"))
            self.assertEqual(data["total_images"], 1)
        finally:
            shutil.rmtree(test_dir, ignore_errors=True)

    def test_print_helpers(self):
        print_report(make_report())
        print_cluster_stats(cluster_stats())
        manager = ProxyManager(["http://1.1.1.1:80"])
        manager.blacklist(manager.pool[0])
        print_proxy_stats(manager)


class TestHandleCrawl(unittest.TestCase):
    @patch("cli.handlers.CrawlEngine")
    def test_local_crawl_saves_output(self, mock_engine_cls):
        report = make_report()
        mock_engine_cls.return_value.crawl = AsyncMock(return_value=report)
        test_dir = tempfile.mkdtemp()
        try:
            output = Path(test_dir) / "r.json"
            args = create_parser().parse_args(["crawl", "https://example.com/", "--output", str(output)])
            result = asyncio.run(handle_crawl(args))
            self.assertIs(result, report)
            self.assertTrue(output.exists())
            mock_engine_cls.return_value.crawl.assert_awaited_once_with("https://example.com/")
        finally:
            shutil.rmtree(test_dir, ignore_errors=True)

    @patch("cli.handlers.CrawlEngine")
    def test_local_crawl_error_returns_none(self, mock_engine_cls):
        mock_engine_cls.return_value.crawl = AsyncMock(side_effect=PolicyDenied("denied"))
        args = create_parser().parse_args(["crawl", "https://example.com/"])
        self.assertIsNone(asyncio.run(handle_crawl(args)))

    @patch("cli.handlers.CrawlEngine")
    def test_invalid_option_reported_not_raised(self, mock_engine_cls):
        args = create_parser().parse_args(["crawl", "https://example.com/", "--quality", "0"])
        self.assertIsNone(asyncio.run(handle_crawl(args)))
        mock_engine_cls.assert_not_called()

    @patch("cli.handlers.TaskCoordinator")
    def test_distributed_crawl(self, mock_coordinator_cls):
        report = make_report()
        coordinator = mock_coordinator_cls.return_value
        coordinator.__enter__.return_value = coordinator
        coordinator.submit.return_value = "t1"
        coordinator.wait.return_value = {"t1": TaskLookup("t1", LookupStatus.COMPLETED, report=report)}

        args = create_parser().parse_args(["crawl", "https://example.com/", "--distributed"])
        self.assertEqual(asyncio.run(handle_crawl(args)), report)
        mock_coordinator_cls.assert_called_once_with(on_saturation="queue")

    @patch("cli.handlers.TaskCoordinator")
    def test_distributed_crawl_failure(self, mock_coordinator_cls):
        coordinator = mock_coordinator_cls.return_value
        coordinator.__enter__.return_value = coordinator
        coordinator.submit.return_value = "t1"
        coordinator.wait.return_value = {"t1": TaskLookup("t1", LookupStatus.FAILED, error="boom")}
        args = create_parser().parse_args(["crawl", "https://example.com/", "--distributed"])
        self.assertIsNone(asyncio.run(handle_crawl(args)))


class TestHandleCrawlBatch(unittest.TestCase):
    @patch("cli.handlers.TaskCoordinator")
    def test_batch(self, mock_coordinator_cls):
        coordinator = mock_coordinator_cls.return_value
        coordinator.__enter__.return_value = coordinator
        coordinator.submit_batch.return_value = ["t1", "t2"]
        results = {
            "t1": TaskLookup("t1", LookupStatus.COMPLETED, report=make_report()),
            "t2": TaskLookup("t2", LookupStatus.FAILED, error="boom"),
        }

        def wait(task_ids, timeout, poll_interval, on_done):
            for lookup in results.values():
                on_done(lookup)
            return results

        coordinator.wait.side_effect = wait
        coordinator.cluster_stats.return_value = cluster_stats()

        args = create_parser().parse_args(["crawl-batch", "https://a.com", "https://b.com", "--queue"])
        self.assertEqual(asyncio.run(handle_crawl_batch(args)), results)
        mock_coordinator_cls.assert_called_once_with(max_workers=None, on_saturation="queue")

    @patch("cli.handlers.TaskCoordinator")
    def test_batch_invalid_option(self, mock_coordinator_cls):
        args = create_parser().parse_args(["crawl-batch", "https://a.com", "--quality", "0"])
        self.assertEqual(asyncio.run(handle_crawl_batch(args)), {})
        mock_coordinator_cls.assert_not_called()

    def test_batch_without_urls(self):
        args = create_parser().parse_args(["crawl-batch"])
        self.assertEqual(asyncio.run(handle_crawl_batch(args)), {})


class TestHandleProxies(unittest.TestCase):
    @patch("cli.handlers.config")
    def test_no_proxies(self, mock_config):
        from config import ProxyConfig
        mock_config.proxy = ProxyConfig(proxy_list=[])
        args = create_parser().parse_args(["proxies", "list"])
        manager = asyncio.run(handle_proxies(args))
        self.assertEqual(manager.pool, [])

    @patch("cli.handlers.ProxyManager.test_all", new_callable=AsyncMock)
    @patch("cli.handlers.config")
    def test_test_action(self, mock_config, mock_test_all):
        from config import CrawlerConfig, ProxyConfig
        mock_config.proxy = ProxyConfig(proxy_list=["http://1.1.1.1:80", "http://2.2.2.2:80"])
        mock_config.crawler = CrawlerConfig()
        mock_test_all.side_effect = lambda rate_gate=None: []

        args = create_parser().parse_args(["proxies", "test", "--clear-blacklist"])
        manager = asyncio.run(handle_proxies(args))
        self.assertEqual(len(manager.pool), 2)
        mock_test_all.assert_awaited_once()


if __name__ == "__main__":
    unittest.main()
