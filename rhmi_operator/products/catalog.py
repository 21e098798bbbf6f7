"""
Declarations for every product the operator can install.

Most products differ only in their package, namespace, versions and the one
custom resource that makes the product run, so they share
OperatorProductReconciler and are described here as data.
"""

from ..models import ProductName as P
from ..services.cluster import Resource
from . import register
from .base import ComponentSpec, OperatorProductReconciler, ProductDeclaration

KEYCLOAK = Resource("keycloak.org/v1alpha1", "Keycloak")
KEYCLOAK_REALM = Resource("keycloak.org/v1alpha1", "KeycloakRealm")
API_MANAGER = Resource("apps.3scale.net/v1alpha1", "APIManager")
GRAFANA = Resource("integreatly.org/v1alpha1", "Grafana")
DISCOVERY_SERVICE = Resource("operator.marin3r.3scale.net/v1alpha1", "DiscoveryService")
OBSERVABILITY = Resource("observability.redhat.com/v1", "Observability")
NOOBAA = Resource("noobaa.io/v1alpha1", "NooBaa")
KAFKA = Resource("kafka.strimzi.io/v1beta1", "Kafka")
CHE_CLUSTER = Resource("org.eclipse.che/v1", "CheCluster")
SYNDESIS = Resource("syndesis.io/v1beta1", "Syndesis")
PUSH_SERVER = Resource("push.aerogear.org/v1alpha1", "PushApplication")
APICURITO = Resource("apicur.io/v1alpha1", "Apicurito")
APICURIO_REGISTRY = Resource("apicur.io/v1alpha1", "ApicurioRegistry")
WEBAPP = Resource("integreatly.org/v1alpha1", "WebApp")
APPLICATION_MONITORING = Resource("applicationmonitoring.integreatly.org/v1alpha1", "ApplicationMonitoring")

DECLARATIONS = {d.name: d for d in (
    ProductDeclaration(
        name=P.RHSSO, namespace="rhsso", package="integreatly-rhsso",
        version="7.6", operator_version="7.6.7-1",
        component=ComponentSpec(KEYCLOAK, "rhsso", {"instances": 2, "externalAccess": {"enabled": True}}),
    ),
    ProductDeclaration(
        name=P.RHSSO_USER, namespace="user-sso", package="integreatly-rhsso",
        version="7.6", operator_version="7.6.7-1",
        component=ComponentSpec(KEYCLOAK, "rhssouser", {"instances": 2, "externalAccess": {"enabled": True}}),
    ),
    ProductDeclaration(
        name=P.THREESCALE, namespace="3scale", package="integreatly-3scale",
        version="2.13.0", operator_version="0.11.8-mas",
        component=ComponentSpec(API_MANAGER, "3scale", {"wildcardDomain": "", "resourceRequirementsEnabled": True}),
        host_route="system-master",
    ),
    ProductDeclaration(
        name=P.CLOUD_RESOURCES, namespace="cloud-resources", package="integreatly-cloud-resources",
        version="1.1.3", operator_version="1.1.3",
    ),
    ProductDeclaration(
        name=P.MARIN3R, namespace="marin3r", package="integreatly-marin3r",
        version="0.13.1", operator_version="0.13.1",
        component=ComponentSpec(DISCOVERY_SERVICE, "instance", {"debug": False}),
    ),
    ProductDeclaration(
        name=P.GRAFANA, namespace="customer-monitoring", package="integreatly-grafana",
        version="9.0.9", operator_version="4.7.0",
        component=ComponentSpec(GRAFANA, "grafana", {"ingress": {"enabled": True}}),
        host_route="grafana-route",
    ),
    ProductDeclaration(
        name=P.OBSERVABILITY, namespace="observability", package="observability-operator",
        version="4.2.1", operator_version="4.2.1",
        component=ComponentSpec(OBSERVABILITY, "observability-stack", {"selfContained": {}}),
    ),
    ProductDeclaration(
        name=P.MCG, namespace="mcg", package="mcg-operator", channel="stable-4.11",
        version="4.11", operator_version="4.11",
        component=ComponentSpec(NOOBAA, "noobaa", {"dbType": "postgres"}),
    ),
    ProductDeclaration(
        name=P.AMQ_STREAMS, namespace="amq-streams", package="integreatly-amq-streams",
        version="1.1.0", operator_version="1.1.0",
        component=ComponentSpec(KAFKA, "integreatly-cluster", {"kafka": {"replicas": 3}, "zookeeper": {"replicas": 3}}),
    ),
    ProductDeclaration(
        name=P.AMQ_ONLINE, namespace="amq-online", package="integreatly-amq-online",
        version="1.4", operator_version="1.4",
        host_route="console",
    ),
    ProductDeclaration(
        name=P.SOLUTION_EXPLORER, namespace="solution-explorer", package="integreatly-solution-explorer",
        version="2.28.0", operator_version="0.0.62",
        component=ComponentSpec(WEBAPP, "solution-explorer", {"appLabel": "tutorial-web-app"}),
        host_route="tutorial-web-app",
    ),
    ProductDeclaration(
        name=P.CODEREADY_WORKSPACES, namespace="codeready-workspaces", package="integreatly-codeready-workspaces",
        version="2.1.1", operator_version="2.1.1",
        component=ComponentSpec(CHE_CLUSTER, "codeready-workspaces", {"server": {"selfSignedCert": False}}),
        host_route="codeready",
    ),
    ProductDeclaration(
        name=P.FUSE, namespace="fuse", package="integreatly-syndesis",
        version="7.6", operator_version="1.6.0",
        component=ComponentSpec(SYNDESIS, "integreatly", {"addons": {"todo": {"enabled": False}}}),
        host_route="syndesis",
    ),
    ProductDeclaration(
        name=P.FUSE_ON_OPENSHIFT, namespace="fuse-on-openshift", package="integreatly-fuse-on-openshift",
        version="7.6", operator_version="7.6",
    ),
    ProductDeclaration(
        name=P.UPS, namespace="ups", package="integreatly-unifiedpush",
        version="2.3.2", operator_version="0.5.0",
        component=ComponentSpec(PUSH_SERVER, "ups", {}),
        host_route="ups-unifiedpush-proxy",
    ),
    ProductDeclaration(
        name=P.APICURIO_REGISTRY, namespace="apicurio-registry", package="integreatly-apicurio-registry",
        version="1.2.3.final", operator_version="0.0.3",
        component=ComponentSpec(APICURIO_REGISTRY, "apicurio-registry", {"configuration": {"persistence": "streams"}}),
    ),
    ProductDeclaration(
        name=P.APICURITO, namespace="apicurito", package="integreatly-apicurito",
        version="7.6", operator_version="1.6.0",
        component=ComponentSpec(APICURITO, "apicurito", {"size": 2}),
        host_route="apicurito",
    ),
    ProductDeclaration(
        name=P.MONITORING, namespace="middleware-monitoring", package="integreatly-monitoring",
        version="1.4.0", operator_version="1.4.0",
        component=ComponentSpec(APPLICATION_MONITORING, "middleware-monitoring", {"labelSelector": "middleware"}),
    ),
    ProductDeclaration(
        name=P.MONITORING_SPEC, namespace="monitoring", package="integreatly-monitoring-spec",
        version="1.0", operator_version="1.0",
    ),
    ProductDeclaration(
        name=P.DATASYNC, namespace="datasync", package="integreatly-datasync",
        version="0.9.4", operator_version="0.9.4",
    ),
)}


@register(*DECLARATIONS)
def new_operator_product(name, config_manager, installation, installer, recorder, logger):
    return OperatorProductReconciler.build(
        DECLARATIONS[name], config_manager, installation, installer, recorder, logger,
    )
