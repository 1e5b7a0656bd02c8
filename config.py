"""
Configuration for the scanner app, read from Streamlit secrets or the environment.

Secrets layout (``.streamlit/secrets.toml``)::

    [aws]
    access_key_id = "..."
    secret_access_key = "..."
    region = "us-west-1"
    table_name = "Documents"
    s3_bucket = "my-documents"

    [scanner]
    angle_tolerance = 20.0
    min_output_size = 32
    fallback_inset = 0.9
"""

import os
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from scanner import BorderDetector, PerspectiveTransformer


@dataclass
class ScannerConfig:
    angle_tolerance: float = 20.0
    min_area_ratio: float = 0.1
    fallback_inset: float = 0.9
    min_output_size: int = 32
    output_format: str = 'JPEG'

    table_name: str = 'Documents'
    bucket_name: Optional[str] = None
    region_name: str = 'us-west-1'
    aws_access_key_id: Optional[str] = None
    aws_secret_access_key: Optional[str] = None

    @property
    def has_aws_credentials(self) -> bool:
        return bool(self.aws_access_key_id and self.aws_secret_access_key)

    def build_detector(self) -> BorderDetector:
        return BorderDetector(
            angle_tolerance=self.angle_tolerance,
            min_area_ratio=self.min_area_ratio,
            fallback_inset=self.fallback_inset,
        )

    def build_transformer(self) -> PerspectiveTransformer:
        return PerspectiveTransformer(
            min_size=(self.min_output_size, self.min_output_size)
        )

    def storage_kwargs(self) -> dict:
        """Keyword arguments for ``DocumentDatabase``."""
        return {
            'table_name': self.table_name,
            'bucket_name': self.bucket_name,
            'region_name': self.region_name,
            'aws_access_key_id': self.aws_access_key_id,
            'aws_secret_access_key': self.aws_secret_access_key,
        }


def _section(secrets: Optional[Mapping[str, Any]], name: str) -> Mapping[str, Any]:
    if not secrets:
        return {}
    try:
        return secrets.get(name) or {}
    except (AttributeError, KeyError):
        return {}


def load_config(
    secrets: Optional[Mapping[str, Any]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> ScannerConfig:
    """
    Build the configuration.

    Secrets win over environment variables, which win over defaults.

    Args:
        secrets: Mapping shaped like ``st.secrets``
        environ: Environment mapping, defaults to ``os.environ``
    """
    env = os.environ if environ is None else environ
    aws = _section(secrets, 'aws')
    scan = _section(secrets, 'scanner')
    defaults = ScannerConfig()

    def pick(section, key, env_key, default, cast=str):
        if key in section and section[key] not in (None, ''):
            return cast(section[key])
        if env.get(env_key):
            return cast(env[env_key])
        return default

    return ScannerConfig(
        angle_tolerance=pick(scan, 'angle_tolerance', 'SCANNER_ANGLE_TOLERANCE',
                             defaults.angle_tolerance, float),
        min_area_ratio=pick(scan, 'min_area_ratio', 'SCANNER_MIN_AREA_RATIO',
                            defaults.min_area_ratio, float),
        fallback_inset=pick(scan, 'fallback_inset', 'SCANNER_FALLBACK_INSET',
                            defaults.fallback_inset, float),
        min_output_size=pick(scan, 'min_output_size', 'SCANNER_MIN_OUTPUT_SIZE',
                             defaults.min_output_size, int),
        output_format=pick(scan, 'output_format', 'SCANNER_OUTPUT_FORMAT',
                           defaults.output_format).upper(),
        table_name=pick(aws, 'table_name', 'DOCUMENTS_TABLE', defaults.table_name),
        bucket_name=pick(aws, 's3_bucket', 'S3_BUCKET', None),
        region_name=pick(aws, 'region', 'AWS_REGION', defaults.region_name),
        aws_access_key_id=pick(aws, 'access_key_id', 'AWS_ACCESS_KEY_ID', None),
        aws_secret_access_key=pick(aws, 'secret_access_key', 'AWS_SECRET_ACCESS_KEY', None),
    )
