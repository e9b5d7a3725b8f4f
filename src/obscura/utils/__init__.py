"""Report generation and logging helpers"""
