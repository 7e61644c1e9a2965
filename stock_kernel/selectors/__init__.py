"""Read-only query selectors returning frozen DTOs."""

from stock_kernel.selectors.base import BaseSelector
from stock_kernel.selectors.grn_selector import GRNSelector
from stock_kernel.selectors.movement_selector import MovementSelector
from stock_kernel.selectors.stock_selector import StockSelector

__all__ = ["BaseSelector", "GRNSelector", "MovementSelector", "StockSelector"]
