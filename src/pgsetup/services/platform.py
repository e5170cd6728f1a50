"""Host platform detection and support gating."""

import platform as platform_module

import distro
from packaging import version

from pgsetup.constants import SUPPORTED_PLATFORMS
from pgsetup.errors import SetupError
from pgsetup.errors_catalog import actionable_error
from pgsetup.models import PlatformInfo


class PlatformService:
    def __init__(self, distro_module=distro):
        self.distro = distro_module

    def detect(self) -> PlatformInfo:
        return PlatformInfo(
            os=platform_module.system().lower(),
            platform=self.distro.id(),
            family=self.distro.like() or self.distro.id(),
            version=self.distro.version(),
        )

    @staticmethod
    def ensure_supported(info: PlatformInfo):
        minimum = SUPPORTED_PLATFORMS.get(info.platform)
        if minimum is None:
            raise SetupError(
                actionable_error("unsupported_platform", platform=info.platform or "unknown")
            )

        try:
            current = version.Version(info.version)
        except version.InvalidVersion as exc:
            raise SetupError(
                f"could not parse current platform version: {info.platform} / version {info.version}"
            ) from exc

        if current < version.Version(minimum):
            raise SetupError(
                f"{info.platform.capitalize()} versions older than {minimum} are not supported"
            )
