"""
Base interfaces for the financial analysis components.

This module defines the abstract base class shared by the allocation engine
and the margin calculator of the Construction Cost Allocation System.
"""

import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Any, TypeVar, Generic
from sqlalchemy.orm import Session

from ccas.db.models import INTERNAL_CATEGORIES
from ccas.utils.common import DEFAULT_EPSILON

# Generic type for the specific analysis result
T = TypeVar('T')


class BaseAnalyzer(ABC, Generic[T]):
    """Base class for all financial analysis components."""

    def __init__(self, db_session: Session, config: Optional[Dict[str, Any]] = None):
        """Initialize the analyzer.

        Args:
            db_session: Database session
            config: Optional configuration dictionary (the ``allocation`` section)
        """
        self.db_session = db_session
        self.config = config or {}
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    @abstractmethod
    def analyze(self, **kwargs) -> T:
        """Perform analysis operation.

        Args:
            **kwargs: Analysis parameters

        Returns:
            Analysis result
        """
        pass

    def get_config_value(self, key: str, default: Any = None) -> Any:
        """Get a configuration value with fallback to default.

        Args:
            key: Configuration key
            default: Default value if key not found

        Returns:
            Configuration value
        """
        return self.config.get(key, default)

    @property
    def epsilon(self) -> float:
        return float(self.get_config_value('epsilon', DEFAULT_EPSILON))

    @property
    def internal_categories(self) -> List[str]:
        return list(self.get_config_value('internal_categories', INTERNAL_CATEGORIES))

    def is_internal(self, category: Optional[str]) -> bool:
        """Whether a line item category is covered by internal labor rather than vendor expenses."""
        return category in self.internal_categories
