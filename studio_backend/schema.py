from __future__ import annotations

from drf_spectacular.openapi import AutoSchema


class FeatureAutoSchema(AutoSchema):
    PATH_TAGS: list[tuple[str, str]] = [
        ('/api/v1/sign/', 'Signing'),
        ('/api/auth/', 'Authentication'),
    ]

    SUFFIX_TAGS: list[tuple[str, str]] = [
        ('/generate-pdf/', 'PDF'),
        ('/regenerate-pdf/', 'PDF'),
        ('/verify-pdf/', 'PDF'),
        ('/pdf-info/', 'PDF'),
        ('/events/', 'Audit'),
    ]

    def get_tags(self) -> list[str]:  # type: ignore[override]
        path = (self.path or '').strip()
        for prefix, tag in self.PATH_TAGS:
            if path.startswith(prefix):
                return [tag]
        for suffix, tag in self.SUFFIX_TAGS:
            if path.endswith(suffix):
                return [tag]
        if path.startswith('/api/v1/contracts/'):
            return ['Contracts']
        return super().get_tags()
