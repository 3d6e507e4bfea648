"""Taxonomía de errores del pipeline de ingesta.

Cada handler convierte estas excepciones en un log + notificación de
error; ninguna debe escapar al loop de MQTT ni al barrido periódico.
"""

from __future__ import annotations


class FloodIngestError(Exception):
    """Base de todos los errores del servicio."""


class ValidationError(FloodIngestError):
    """Falta un campo requerido o el valor no es válido."""


class InvalidArgumentError(ValidationError):
    """Argumento vacío o malformado (p.ej. código de dispositivo)."""


class NoDataError(ValidationError):
    """Lectura sin ninguna métrica (ni lluvia ni nivel de agua)."""


class NotFoundError(FloodIngestError):
    """Dispositivo o ubicación inexistente donde no aplica auto-registro."""


class ReferentialIntegrityError(NotFoundError):
    """Una FK apunta a un registro que no existe."""


class ConflictError(FloodIngestError):
    """Clave única duplicada al crear."""


class TransientStoreError(FloodIngestError):
    """La capa de persistencia no está disponible."""


class FatalError(FloodIngestError):
    """Fallo irrecuperable de arranque/configuración."""
