"""ZeFit gym back-office console."""
