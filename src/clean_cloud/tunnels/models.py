"""SQLAlchemy model for per-organization tunnels."""

from sqlalchemy import ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from clean_cloud.common.models import Base, TimestampMixin, generate_uuid

STATUS_ACTIVE = "active"
# Old tunnel torn down, replacement not yet recorded.
STATUS_ROTATING = "rotating"


class TunnelModel(Base, TimestampMixin):
    __tablename__ = "tunnels"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    # UNIQUE: at most one tunnel per organization, enforced by the database.
    org_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    provider_tunnel_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    hostname: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    dns_record_id: Mapped[str] = mapped_column(String(64), nullable=False)
    token: Mapped[str] = mapped_column(Text, nullable=False)
    engine_api_key: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=STATUS_ACTIVE)

    @property
    def url(self) -> str:
        return f"https://{self.hostname}"
