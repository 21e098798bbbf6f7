"""
Stage registry: the ordered install and uninstall stages of each installation flavor.

The tables are compiled in and never mutated. Each flavor is declared once as a
mapping of stage name to product names, and the Stage/Type objects are derived from
that declaration so the near-duplicate flavors share one source of truth.

Uninstall order is not the reverse of install order: shared infrastructure
(monitoring, cloud resources) is removed only after the products that use it.
"""
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping, Optional, Sequence, Tuple

from .models import InstallationType, ProductName as P, ProductStatus, StageName as S

GCP_PLATFORM = "GCP"


class UnknownInstallationTypeError(ValueError):
    """Raised when no stage table exists for an installation flavor."""


@dataclass(frozen=True)
class Stage:
    name: str
    products: Mapping[str, ProductStatus] = field(default_factory=dict)

    @property
    def product_names(self) -> Tuple[str, ...]:
        return tuple(self.products)


@dataclass(frozen=True)
class Type:
    install_stages: Tuple[Stage, ...]
    uninstall_stages: Tuple[Stage, ...]

    def get_install_stages(self) -> Tuple[Stage, ...]:
        """Stages in install order. The next stage starts only once the previous completed."""
        return self.install_stages

    def get_uninstall_stages(self) -> Tuple[Stage, ...]:
        return self.uninstall_stages

    def has_product(self, product: str) -> bool:
        return any(product in stage.products for stage in self.install_stages)


StageTable = Sequence[Tuple[str, Sequence[str]]]

# ---------------------------------------------------------------------------
# Declarative flavor tables
# ---------------------------------------------------------------------------

_MANAGED_API_INSTALL: StageTable = (
    (S.BOOTSTRAP, ()),
    (S.INSTALLATION, (
        P.CLOUD_RESOURCES, P.OBSERVABILITY, P.RHSSO, P.THREESCALE,
        P.RHSSO_USER, P.MARIN3R, P.GRAFANA,
    )),
)

_MANAGED_API_UNINSTALL: StageTable = (
    (S.UNINSTALL_PRODUCTS, (P.RHSSO, P.THREESCALE, P.RHSSO_USER, P.MARIN3R, P.GRAFANA)),
    (S.UNINSTALL_CLOUD_RESOURCES, (P.CLOUD_RESOURCES, P.OBSERVABILITY)),
    (S.UNINSTALL_BOOTSTRAP, ()),
)

_MANAGED_INSTALL: StageTable = (
    (S.BOOTSTRAP, ()),
    (S.CLOUD_RESOURCES, (P.CLOUD_RESOURCES,)),
    (S.MONITORING, (P.MONITORING, P.MONITORING_SPEC)),
    (S.AUTHENTICATION, (P.RHSSO,)),
    (S.PRODUCTS, (
        P.THREESCALE, P.AMQ_ONLINE, P.AMQ_STREAMS, P.CODEREADY_WORKSPACES, P.FUSE,
        P.FUSE_ON_OPENSHIFT, P.RHSSO_USER, P.UPS, P.APICURIO_REGISTRY, P.APICURITO,
        P.DATASYNC,
    )),
    (S.SOLUTION_EXPLORER, (P.SOLUTION_EXPLORER,)),
)

_MANAGED_UNINSTALL: StageTable = (
    (S.UNINSTALL_PRODUCTS, (
        P.SOLUTION_EXPLORER, P.THREESCALE, P.AMQ_ONLINE, P.AMQ_STREAMS,
        P.CODEREADY_WORKSPACES, P.FUSE, P.FUSE_ON_OPENSHIFT, P.RHSSO_USER, P.UPS,
        P.APICURIO_REGISTRY, P.APICURITO, P.DATASYNC, P.RHSSO,
    )),
    (S.UNINSTALL_MONITORING, (P.MONITORING, P.MONITORING_SPEC)),
    (S.UNINSTALL_CLOUD_RESOURCES, (P.CLOUD_RESOURCES,)),
    (S.UNINSTALL_BOOTSTRAP, ()),
)

_WORKSHOP_INSTALL: StageTable = (
    (S.BOOTSTRAP, ()),
    (S.CLOUD_RESOURCES, (P.CLOUD_RESOURCES,)),
    (S.MONITORING, (P.MONITORING,)),
    (S.AUTHENTICATION, (P.RHSSO,)),
    (S.PRODUCTS, (
        P.THREESCALE, P.AMQ_ONLINE, P.CODEREADY_WORKSPACES, P.FUSE,
        P.FUSE_ON_OPENSHIFT, P.RHSSO_USER, P.UPS, P.APICURITO,
    )),
    (S.SOLUTION_EXPLORER, (P.SOLUTION_EXPLORER,)),
)

_WORKSHOP_UNINSTALL: StageTable = (
    (S.UNINSTALL_PRODUCTS, (
        P.SOLUTION_EXPLORER, P.THREESCALE, P.AMQ_ONLINE, P.CODEREADY_WORKSPACES,
        P.FUSE, P.FUSE_ON_OPENSHIFT, P.RHSSO_USER, P.UPS, P.APICURITO, P.RHSSO,
    )),
    (S.UNINSTALL_MONITORING, (P.MONITORING,)),
    (S.UNINSTALL_CLOUD_RESOURCES, (P.CLOUD_RESOURCES,)),
    (S.UNINSTALL_BOOTSTRAP, ()),
)

# flavor -> (install table, uninstall table, products dropped from both)
FLAVORS = {
    InstallationType.MANAGED_API.value: (_MANAGED_API_INSTALL, _MANAGED_API_UNINSTALL, ()),
    InstallationType.MULTITENANT_MANAGED_API.value: (
        _MANAGED_API_INSTALL, _MANAGED_API_UNINSTALL, (P.RHSSO_USER,),
    ),
    InstallationType.MANAGED.value: (_MANAGED_INSTALL, _MANAGED_UNINSTALL, ()),
    InstallationType.WORKSHOP.value: (_WORKSHOP_INSTALL, _WORKSHOP_UNINSTALL, ()),
}

# flavor -> platform -> stage -> extra products
PLATFORM_EXTRAS = {
    InstallationType.MANAGED_API.value: {
        GCP_PLATFORM: {
            S.INSTALLATION: (P.MCG,),
            S.UNINSTALL_CLOUD_RESOURCES: (P.MCG,),
        },
    },
}


# ---------------------------------------------------------------------------
# Derivation
# ---------------------------------------------------------------------------

def _build_stages(table: StageTable, exclude: Sequence[str],
                  extras: Mapping[str, Sequence[str]]) -> Tuple[Stage, ...]:
    stages = []
    for stage_name, products in table:
        names = [p for p in products if p not in exclude]
        names += [p for p in extras.get(stage_name, ()) if p not in names]
        stages.append(Stage(
            name=stage_name,
            products=MappingProxyType({p: ProductStatus(name=p) for p in names}),
        ))
    return tuple(stages)


def _check_uninstall_covers_install(flavor: str, t: Type):
    installed = {p for stage in t.install_stages for p in stage.products}
    removed = {p for stage in t.uninstall_stages for p in stage.products}
    missing = installed - removed
    if missing:
        raise AssertionError(
            f"stage table for {flavor} never uninstalls: {', '.join(sorted(missing))}"
        )


def build_type(flavor: str, platform: Optional[str] = None) -> Type:
    install, uninstall, exclude = FLAVORS[flavor]
    extras = PLATFORM_EXTRAS.get(flavor, {}).get(platform or "", {})
    t = Type(
        install_stages=_build_stages(install, exclude, extras),
        uninstall_stages=_build_stages(uninstall, exclude, extras),
    )
    _check_uninstall_covers_install(flavor, t)
    return t


def type_for_flavor(flavor: str, platform: Optional[str] = None) -> Type:
    """Look up the stage tables of an installation flavor.

    `platform` only matters for flavors with platform-specific products
    (managed-api on GCP also installs the object gateway).
    """
    if flavor not in FLAVORS:
        raise UnknownInstallationTypeError(f"unknown installation type: {flavor}")
    if flavor in PLATFORM_EXTRAS and platform in PLATFORM_EXTRAS[flavor]:
        return build_type(flavor, platform)
    return _TYPES[flavor]


def all_products() -> Tuple[str, ...]:
    """Every product named by any flavor on any platform."""
    names = []
    for flavor in FLAVORS:
        platforms = [None] + list(PLATFORM_EXTRAS.get(flavor, {}))
        for platform in platforms:
            for stage in build_type(flavor, platform).get_install_stages():
                names += [p for p in stage.products if p not in names]
    return tuple(names)


_TYPES = {flavor: build_type(flavor) for flavor in FLAVORS}
