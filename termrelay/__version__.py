"""Version information for termrelay."""

__version__ = "0.3.0"
__author__ = "Robert Macrae"
__license__ = "AGPL-3.0-or-later"
