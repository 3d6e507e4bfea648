"""Servicio de ingesta de telemetría de inundaciones.

Estructura:
- domain/         → Modelos y clasificador de umbrales
- persistence/    → Esquema y repositorios (SQLAlchemy Core)
- services/       → Directorio de dispositivos, logs, estado de ubicaciones
- mqtt/           → Cliente, parseo de mensajes, router y handlers
- notifications/  → Emisor de notificaciones con estadísticas
- realtime/       → Fanout a dashboards (WebSocket, Redis)
- monitoring/     → Stats, métricas y barrido de dispositivos offline
- endpoints/      → API HTTP / WebSocket
"""
