"""
站点图片爬虫 - 命令行入口
"""
import asyncio

from config import config
from core.logs import setup_logging
from cli import (
    create_parser,
    handle_crawl,
    handle_crawl_batch,
    handle_proxies,
    handle_cluster_stats,
)

HANDLERS = {
    'crawl': handle_crawl,
    'crawl-batch': handle_crawl_batch,
    'proxies': handle_proxies,
    'cluster-stats': handle_cluster_stats,
}


async def main(argv=None):
    """主函数"""
    parser = create_parser()
    args = parser.parse_args(argv)

    setup_logging(config.log)

    print("\n" + "=" * 60)
    print("🕷️  站点图片爬虫")
    print("=" * 60)

    await HANDLERS[args.command](args)


def run():
    """控制台脚本入口"""
    asyncio.run(main())


if __name__ == "__main__":
    run()
