"""Ad-to-revenue reconciliation for Meta Ads."""

__version__ = "0.1.0"
