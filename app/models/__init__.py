# Loads model modules so their tables register on Base.metadata
import app.models.certificate   # noqa: F401
import app.models.short_url     # noqa: F401
import app.models.audit         # noqa: F401

__all__: list[str] = []
