"""
工作进程逻辑 单元测试（在当前进程内直接调用）
"""
import queue
import unittest
from datetime import datetime
from unittest.mock import MagicMock, patch

from config import Config
from core.errors import PolicyDenied
from core.models import CrawlReport
from core.options import CrawlOptions
from cluster.task import MSG_START
from cluster.worker import run_task, worker_main


def start_message(task_id="t1", url="https://example.com/", options=None):
    return {
        "type": MSG_START,
        "task_id": task_id,
        "url": url,
        "options": (options or CrawlOptions(max_pages=3)).to_dict(),
    }


def drain(results):
    messages = []
    while not results.empty():
        messages.append(results.get_nowait())
    return messages


def fake_report(url):
    now = datetime.now()
    return CrawlReport.build(url, {}, {}, pages_visited=1, started_at=now, finished_at=now)


class TestRunTask(unittest.TestCase):
    @patch("cluster.worker.run_crawl")
    def test_success_sends_started_progress_completed(self, mock_run):
        def crawl(url, options, proxy_manager=None, on_progress=None):
            on_progress(50.0)
            return fake_report(url)

        mock_run.side_effect = crawl
        results = queue.Queue()
        proxy_manager = MagicMock()
        run_task(3, start_message(), results, proxy_manager)

        messages = drain(results)
        self.assertEqual([m[1]["type"] for m in messages], ["started", "progress", "completed"])
        self.assertTrue(all(worker_id == 3 for worker_id, _ in messages))
        self.assertTrue(all(m[1]["task_id"] == "t1" for m in messages))
        self.assertEqual(messages[1][1]["percent"], 50.0)
        self.assertEqual(messages[2][1]["report"]["start_url"], "https://example.com/")

        url, options = mock_run.call_args.args
        self.assertEqual(url, "https://example.com/")
        self.assertEqual(options.max_pages, 3)
        self.assertIs(mock_run.call_args.kwargs["proxy_manager"], proxy_manager)

    @patch("cluster.worker.run_crawl", side_effect=PolicyDenied("robots.txt disallows https://example.com/"))
    def test_failure_sends_failed(self, _):
        results = queue.Queue()
        run_task(1, start_message(), results, MagicMock())
        messages = drain(results)
        self.assertEqual([m[1]["type"] for m in messages], ["started", "failed"])
        self.assertIn("robots.txt", messages[1][1]["error"])

    @patch("cluster.worker.run_crawl")
    def test_invalid_options_fail_task(self, mock_run):
        results = queue.Queue()
        message = start_message()
        message["options"] = {"maxDepth": -1}
        run_task(1, message, results, MagicMock())
        self.assertEqual(drain(results)[-1][1]["type"], "failed")
        mock_run.assert_not_called()


class TestWorkerMain(unittest.TestCase):
    @patch("cluster.worker.setup_logging")
    @patch("cluster.worker.run_task")
    def test_loop_until_sentinel(self, mock_run_task, mock_logging):
        commands = queue.Queue()
        commands.put({"type": "ping"})
        commands.put(start_message("a"))
        commands.put(start_message("b"))
        commands.put(None)
        results = queue.Queue()

        worker_main(2, commands, results, Config())

        mock_logging.assert_called_once()
        self.assertEqual(mock_logging.call_args.kwargs["process_name"], "worker-2")
        handled = [call.args[1]["task_id"] for call in mock_run_task.call_args_list]
        self.assertEqual(handled, ["a", "b"])
        # 同一个代理管理器贯穿进程内所有任务
        managers = {id(call.args[3]) for call in mock_run_task.call_args_list}
        self.assertEqual(len(managers), 1)


if __name__ == "__main__":
    unittest.main()
