"""taskpilot — scheduled task engine with execution tracking."""
