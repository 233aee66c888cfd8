"""
使用方式:
    python -m pool_monitor -c config.yaml
    或
    pool-monitor -c config.yaml
"""

from pool_monitor.main import cli

if __name__ == "__main__":
    cli()
