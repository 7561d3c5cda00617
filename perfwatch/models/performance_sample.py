import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from sqlalchemy import (
  BigInteger,
  CheckConstraint,
  Column,
  DateTime,
  Float,
  Index,
  Integer,
  String,
  Uuid,
)

from perfwatch.lib.database import Base
from perfwatch.lib.timeutil import ensure_utc, utcnow


class PerformanceSample(Base):
  """One completed monitored call (RPC procedure or HTTP request).

  Rows are written once by the ingestion layer and only ever deleted by
  retention cleanup.
  """

  __tablename__ = 'performance_samples'

  id = Column(Uuid, primary_key=True, default=uuid.uuid4)
  endpoint = Column(String(500), nullable=False)
  method = Column(String(20), nullable=False)
  response_time_ms = Column(Float, nullable=False)
  status_code = Column(Integer, nullable=False)
  timestamp = Column(DateTime(timezone=True), nullable=False, default=utcnow)
  user_id = Column(String(255), nullable=True)
  api_key_id = Column(String(255), nullable=True)
  memory_usage_bytes = Column(BigInteger, nullable=False, default=0)
  cpu_usage_seconds = Column(Float, nullable=False, default=0.0)
  database_query_count = Column(Integer, nullable=False, default=0)
  slow_query_count = Column(Integer, nullable=False, default=0)
  cache_hits = Column(Integer, nullable=False, default=0)
  cache_misses = Column(Integer, nullable=False, default=0)

  __table_args__ = (
    CheckConstraint('response_time_ms >= 0', name='ck_performance_samples_response_time'),
    CheckConstraint(
      'status_code >= 100 AND status_code <= 599', name='ck_performance_samples_status_code'
    ),
    Index('ix_performance_samples_timestamp', 'timestamp'),
    Index('ix_performance_samples_endpoint', 'endpoint'),
    Index('ix_performance_samples_user_id', 'user_id'),
  )

  @property
  def is_error(self) -> bool:
    return self.status_code >= 400

  def __repr__(self) -> str:
    return (
      f"<PerformanceSample(endpoint='{self.endpoint}', method='{self.method}', "
      f'status_code={self.status_code}, response_time_ms={self.response_time_ms})>'
    )


class PerformanceSampleCreate(BaseModel):
  """Validated input for a new sample."""

  endpoint: str = Field(..., min_length=1, max_length=500, description='Route or procedure name')
  method: str = Field(..., min_length=1, max_length=20, description='RPC type or HTTP verb')
  response_time_ms: float = Field(..., ge=0, description='Wall-clock duration in milliseconds')
  status_code: int = Field(..., ge=100, le=599, description='HTTP-equivalent status code')
  timestamp: datetime = Field(default_factory=utcnow, description='Completion time (UTC)')
  user_id: Optional[str] = Field(None, max_length=255)
  api_key_id: Optional[str] = Field(None, max_length=255)
  memory_usage_bytes: int = Field(0, ge=0, description='Process memory at sample time')
  cpu_usage_seconds: float = Field(0.0, ge=0, description='Process CPU time at sample time')
  database_query_count: int = Field(0, ge=0)
  slow_query_count: int = Field(0, ge=0, description='Statements slower than the slow query threshold')
  cache_hits: int = Field(0, ge=0)
  cache_misses: int = Field(0, ge=0)

  @field_validator('timestamp')
  @classmethod
  def normalize_timestamp(cls, v: datetime) -> datetime:
    return ensure_utc(v)

  def to_orm(self) -> PerformanceSample:
    return PerformanceSample(id=uuid.uuid4(), **self.model_dump())


class PerformanceSampleRead(BaseModel):
  """Sample as returned by the metrics API."""

  model_config = ConfigDict(from_attributes=True)

  id: uuid.UUID
  endpoint: str
  method: str
  response_time_ms: float
  status_code: int
  timestamp: datetime
  user_id: Optional[str] = None
  api_key_id: Optional[str] = None
  memory_usage_bytes: int
  cpu_usage_seconds: float
  database_query_count: int
  slow_query_count: int = 0
  cache_hits: int
  cache_misses: int

  @field_validator('timestamp')
  @classmethod
  def normalize_timestamp(cls, v: datetime) -> datetime:
    return ensure_utc(v)
