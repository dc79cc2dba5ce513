from .logging import RankLogger, format_rank_prefix, setup_logger

__all__ = ["RankLogger", "format_rank_prefix", "setup_logger"]
