"""External service connectors (Meta Ads, Google Sheets)."""
