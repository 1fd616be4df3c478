"""Settlement: auto-void and refund of predictions on cancelled or postponed events."""
