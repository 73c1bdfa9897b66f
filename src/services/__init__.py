"""Engine services: market data, AI proposals, consensus, portfolio, scan and monitor"""
