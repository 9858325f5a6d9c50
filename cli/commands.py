"""
CLI命令定义（argparse）
"""
import argparse


def _add_crawl_options(parser: argparse.ArgumentParser):
    """爬取参数（未指定时使用配置/环境变量中的默认值）"""
    group = parser.add_argument_group('爬取参数')
    group.add_argument('--max-depth', type=int, default=None, help='最大爬取深度')
    group.add_argument('--max-pages', type=int, default=None, help='最大页面数')
    group.add_argument('--category-mode', type=str, default=None, choices=['path', 'page', 'domain'],
                       help='分类模式：path（路径）/ page（页面标题）/ domain（子域名）')
    group.add_argument('--extensions', type=str, default=None, help='允许的扩展名，逗号分隔（如 jpg,png）')
    group.add_argument('--min-width', type=int, default=None, help='最小宽度（px）')
    group.add_argument('--min-height', type=int, default=None, help='最小高度（px）')
    group.add_argument('--max-size-kb', type=int, default=None, help='最大图片大小（KB）')
    group.add_argument('--quality', type=int, default=None, help='JPEG质量（1-100）')
    group.add_argument('--no-dedup', dest='detect_duplicates', action='store_false', default=None,
                       help='关闭图片去重')
    group.add_argument('--respect-robots', action='store_true', default=None, help='遵守 robots.txt')
    group.add_argument('--delay-ms', type=int, default=None, help='请求间隔（毫秒）')
    group.add_argument('--timeout-ms', type=int, default=None, help='请求超时（毫秒）')
    group.add_argument('--concurrency', type=int, default=None, help='并发请求数')
    group.add_argument('--use-proxy', action='store_true', default=None, help='使用代理池（PROXY_LIST）')
    group.add_argument('--user-agent', type=str, default=None, help='自定义 User-Agent')
    group.add_argument('--rotate-ua', dest='rotate_user_agent', action='store_true', default=None,
                       help='每次请求随机 User-Agent')
    group.add_argument('--rate-limit', type=int, default=None, help='每秒最大请求数（按URL）')


def create_parser() -> argparse.ArgumentParser:
    """
    创建命令行参数解析器

    Returns:
        ArgumentParser 实例
    """
    parser = argparse.ArgumentParser(
        prog='crawler.py',
        description='站点图片爬虫',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog='''
示例:
  # 本地爬取单个站点
  python crawler.py crawl "https://example.com" --max-depth 1 --max-pages 20

  # 输出报告到JSON文件
  python crawler.py crawl "https://example.com" --output report.json

  # 交给工作进程执行
  python crawler.py crawl "https://example.com" --distributed

  # 批量爬取（多进程）
  python crawler.py crawl-batch https://a.com https://b.com --queue
  python crawler.py crawl-batch --file urls.txt --max-workers 4

  # 代理管理
  python crawler.py proxies list
  python crawler.py proxies test --clear-blacklist

  # 集群状态
  python crawler.py cluster-stats
        '''
    )

    subparsers = parser.add_subparsers(dest='command', help='子命令', required=True)

    # ============================================================================
    # 子命令: crawl - 爬取单个站点（本地或分布式）
    # ============================================================================
    parser_crawl = subparsers.add_parser('crawl', help='爬取单个站点')
    parser_crawl.add_argument('url', type=str, help='起始URL')
    parser_crawl.add_argument('--distributed', action='store_true', help='交给工作进程执行')
    parser_crawl.add_argument('--output', type=str, default=None, help='报告输出文件（JSON）')
    parser_crawl.add_argument('--wait-timeout', type=float, default=None, help='分布式模式等待超时（秒）')
    _add_crawl_options(parser_crawl)

    # ============================================================================
    # 子命令: crawl-batch - 批量爬取（多进程）
    # ============================================================================
    parser_batch = subparsers.add_parser('crawl-batch', help='批量爬取多个站点（多进程）')
    parser_batch.add_argument('urls', type=str, nargs='*', help='起始URL列表')
    parser_batch.add_argument('--file', type=str, default=None, help='URL列表文件（每行一个）')
    parser_batch.add_argument('--max-workers', type=int, default=None, help='最大工作进程数')
    parser_batch.add_argument('--queue', action='store_true', help='无空闲进程时排队（默认拒绝）')
    parser_batch.add_argument('--output-dir', type=str, default=None, help='报告输出目录')
    parser_batch.add_argument('--wait-timeout', type=float, default=None, help='等待超时（秒）')
    _add_crawl_options(parser_batch)

    # ============================================================================
    # 子命令: proxies - 代理管理
    # ============================================================================
    parser_proxies = subparsers.add_parser('proxies', help='代理管理')
    parser_proxies.add_argument('action', choices=['list', 'test'], help='list: 列出代理；test: 测试全部代理')
    parser_proxies.add_argument('--clear-blacklist', action='store_true', help='操作前清空黑名单')

    # ============================================================================
    # 子命令: cluster-stats - 集群状态
    # ============================================================================
    subparsers.add_parser('cluster-stats', help='启动进程池并输出集群状态')

    return parser
