"""
CLI命令处理函数
"""
import asyncio
import json
from pathlib import Path
from typing import Any, Dict, List
from loguru import logger
from pydantic import ValidationError
from tqdm import tqdm

from config import config
from core.engine import CrawlEngine
from core.errors import CrawlerError
from core.models import CrawlReport
from core.options import CrawlOptions
from core.proxy_manager import ProxyManager
from core.rate_gate import RateGate
from cluster.coordinator import TaskCoordinator
from cluster.task import LookupStatus


def build_options(args) -> CrawlOptions:
    """
    由命令行参数构造 CrawlOptions（未指定的参数使用配置默认值）

    Args:
        args: argparse 解析结果

    Returns:
        CrawlOptions

    Raises:
        pydantic.ValidationError: 参数非法
    """
    max_size_kb = getattr(args, 'max_size_kb', None)
    return CrawlOptions.from_config(
        max_depth=getattr(args, 'max_depth', None),
        max_pages=getattr(args, 'max_pages', None),
        category_mode=getattr(args, 'category_mode', None),
        allowed_extensions=getattr(args, 'extensions', None),
        min_width=getattr(args, 'min_width', None),
        min_height=getattr(args, 'min_height', None),
        max_image_size_bytes=max_size_kb * 1024 if max_size_kb is not None else None,
        jpeg_quality=getattr(args, 'quality', None),
        detect_duplicates=getattr(args, 'detect_duplicates', None),
        respect_robots=getattr(args, 'respect_robots', None),
        request_delay_ms=getattr(args, 'delay_ms', None),
        request_timeout_ms=getattr(args, 'timeout_ms', None),
        concurrent_requests=getattr(args, 'concurrency', None),
        use_proxy=getattr(args, 'use_proxy', None),
        user_agent=getattr(args, 'user_agent', None),
        rotate_user_agent=getattr(args, 'rotate_user_agent', None),
        rate_limit_requests=getattr(args, 'rate_limit', None),
    )


def load_urls(args) -> List[str]:
    """合并命令行URL和 --file 中的URL（忽略空行和 # 注释），保持顺序去重"""
    urls = list(getattr(args, 'urls', None) or [])
    file_path = getattr(args, 'file', None)
    if file_path:
        with open(file_path, 'r', encoding='utf-8') as f:
            for line in f:
                line = line.strip()
                if line and not line.startswith('#'):
                    urls.append(line)
    return list(dict.fromkeys(urls))


def save_report(report: CrawlReport, path: Path):
    """保存报告为JSON"""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, 'w', encoding='utf-8') as f:
        json.dump(report.to_dict(), f, ensure_ascii=False, indent=2)
    logger.info(f"💾 报告已保存: {path}")


async def handle_crawl(args):
    """处理 crawl 子命令"""
    print(f"\n📌 命令: 爬取站点")
    print(f"URL: {args.url}")

    try:
        options = build_options(args)
    except ValidationError as e:
        logger.error(f"❌ 参数非法: {e}")
        return None
    print(f"深度: {options.max_depth}, 最大页数: {options.max_pages}, 分类: {options.category_mode}")

    if args.distributed:
        report = await _crawl_distributed(args, options)
    else:
        proxy_manager = ProxyManager.from_config(config.proxy) if options.use_proxy else None
        engine = CrawlEngine(options, proxy_manager=proxy_manager)
        try:
            report = await engine.crawl(args.url)
        except CrawlerError as e:
            logger.error(f"❌ 爬取失败: {e}")
            return None

    if report is None:
        return None

    print_report(report)
    if args.output:
        save_report(report, Path(args.output))
    return report


async def _crawl_distributed(args, options: CrawlOptions):
    coordinator = TaskCoordinator(on_saturation="queue")
    with coordinator:
        try:
            task_id = coordinator.submit(args.url, options)
        except CrawlerError as e:
            logger.error(f"❌ 提交失败: {e}")
            return None
        logger.info(f"📤 任务已提交: {task_id}")
        results = await asyncio.to_thread(coordinator.wait, [task_id], args.wait_timeout)

    lookup = results[task_id]
    if lookup.status == LookupStatus.COMPLETED:
        return lookup.report
    if lookup.status == LookupStatus.PROCESSING:
        logger.warning(f"⏱️  任务未在超时前完成: {task_id}")
    else:
        logger.error(f"❌ 任务失败: {lookup.error}")
    return None


async def handle_crawl_batch(args):
    """处理 crawl-batch 子命令"""
    urls = load_urls(args)
    print(f"\n📌 命令: 批量爬取")
    print(f"URL数: {len(urls)}")

    if not urls:
        logger.error("❌ 没有可爬取的URL（使用位置参数或 --file）")
        return {}

    try:
        options = build_options(args)
    except ValidationError as e:
        logger.error(f"❌ 参数非法: {e}")
        return {}

    coordinator = TaskCoordinator(
        max_workers=args.max_workers,
        on_saturation="queue" if args.queue else None,
    )

    with coordinator:
        task_ids = coordinator.submit_batch(urls, options)
        logger.info(f"🚀 已提交 {len(task_ids)}/{len(urls)} 个任务")

        with tqdm(total=len(task_ids), desc="爬取进度", unit="task") as bar:
            results = await asyncio.to_thread(
                coordinator.wait, task_ids, args.wait_timeout, 0.5, lambda lookup: bar.update(1)
            )
        stats = coordinator.cluster_stats()

    output_dir = Path(args.output_dir) if args.output_dir else None
    print("\n" + "=" * 60)
    print("📋 任务结果:")
    for task_id, lookup in results.items():
        if lookup.status == LookupStatus.COMPLETED:
            report = lookup.report
            print(f"  ✅ {task_id[:8]} {report.start_url}: {report.total_images} 张图片, {report.pages_visited} 页")
            if output_dir:
                save_report(report, output_dir / f"{task_id}.json")
        elif lookup.status == LookupStatus.FAILED:
            print(f"  ❌ {task_id[:8]}: {lookup.error}")
        else:
            print(f"  ⏳ {task_id[:8]}: {lookup.status.value}")
    print("=" * 60)
    print_cluster_stats(stats)
    return results


async def handle_proxies(args):
    """处理 proxies 子命令"""
    proxy_manager = ProxyManager.from_config(config.proxy, enabled=True)
    print(f"\n📌 命令: 代理管理 ({args.action})")

    if not proxy_manager.pool:
        print("ℹ️  未配置代理（设置环境变量 PROXY_LIST）")
        return proxy_manager

    if args.clear_blacklist:
        proxy_manager.clear_blacklist()

    if args.action == 'test':
        rate_gate = RateGate(max_requests=config.crawler.rate_limit_requests,
                             period=config.crawler.rate_limit_period_ms / 1000)
        results = await proxy_manager.test_all(rate_gate)
        for endpoint, reachable in results:
            print(f"  {'✅' if reachable else '❌'} {endpoint.address}")

    print_proxy_stats(proxy_manager)
    return proxy_manager


async def handle_cluster_stats(args):
    """处理 cluster-stats 子命令"""
    print(f"\n📌 命令: 集群状态")
    with TaskCoordinator() as coordinator:
        stats = coordinator.cluster_stats()
    print_cluster_stats(stats)
    return stats


# ============================================================================
# 输出
# ============================================================================

def print_report(report: CrawlReport):
    """输出爬取报告"""
    print("\n" + "=" * 60)
    print("📊 爬取统计:")
    print(f"  起始URL: {report.start_url}")
    print(f"  访问页面: {report.pages_visited} (失败 {report.pages_failed})")
    print(f"  发现图片: {report.discovered}")
    print(f"  收录图片: {report.total_images}")
    print(f"  去重跳过: {report.duplicates}")
    print(f"  过滤跳过: {report.filtered}")
    print(f"  获取失败: {report.failed}")
    print(f"  耗时: {report.elapsed_seconds:.1f}s")
    if report.categories:
        print("📁 分类:")
        for category, stats in report.categories.items():
            print(f"  {category}: {stats.count} 张, {stats.total_size_bytes / 1024:.1f}KB, "
                  f"平均 {stats.avg_width:.0f}x{stats.avg_height:.0f}, {stats.page_count} 个页面")
    print("=" * 60)


def print_proxy_stats(proxy_manager: ProxyManager):
    """输出代理统计"""
    summary = proxy_manager.summary()
    print("\n" + "=" * 60)
    print(f"🌐 代理: 共 {summary['total']}, 可用 {summary['active']}, 黑名单 {summary['blacklisted']}")
    for item in proxy_manager.get_stats():
        flag = "🚫" if item["blacklisted"] else "  "
        print(f"  {flag} {item['proxy']}  成功 {item['successes']} / 失败 {item['failures']}  ({item['success_rate']}%)")
    print("=" * 60)


def print_cluster_stats(stats: Dict[str, Any]):
    """输出集群统计"""
    workers = stats["workers"]
    print("\n" + "=" * 60)
    print("🖥️  集群统计:")
    print(f"  进程: 共 {workers['total']}, 忙碌 {workers['busy']}, 空闲 {workers['idle']}")
    print(f"  任务: {stats['tasks']['by_state']} (排队 {stats['tasks']['pending']})")
    print(f"  计数: {stats['stats']}")
    redis_info = stats["result_store"].get("redis")
    if redis_info:
        print(f"  Redis: {redis_info}")
    print("=" * 60)
