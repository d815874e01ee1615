"""Portfolio exposure aggregation"""
from .portfolio_aggregator import PortfolioAggregator, split_instrument
