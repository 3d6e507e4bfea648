"""Monitoring - Stats, métricas, health, logging y barrido offline."""
