from __future__ import annotations

"""Vocabulary namespaces used when reading the requirements server graph.

This module is the single source of truth for namespace strings used by the
crawler, the baseline reader and the element translator.
"""

from rdflib import Namespace
from rdflib.namespace import DCTERMS, FOAF, RDF, RDFS

OSLC_NS = "http://open-services.net/ns/core#"
OSLC_RM_NS = "http://open-services.net/ns/rm#"
OSLC_RM_1_NS = "http://open-services.net/xmlns/rm/1.0/"
OSLC_CONFIG_NS = "http://open-services.net/ns/config#"
JAZZ_NAV_NS = "http://jazz.net/ns/rm/navigation#"
IBM_NAV_NS = "http://com.ibm.rdm/navigation#"

OSLC = Namespace(OSLC_NS)
OSLC_RM = Namespace(OSLC_RM_NS)
OSLC_RM_1 = Namespace(OSLC_RM_1_NS)
OSLC_CONFIG = Namespace(OSLC_CONFIG_NS)
JAZZ_NAV = Namespace(JAZZ_NAV_NS)
IBM_NAV = Namespace(IBM_NAV_NS)
DCT = DCTERMS

# Objects of these predicates are followed regardless of crawl depth.
MANDATORY_FOLLOW = frozenset({OSLC.instanceShape})

PREFIXES: dict[str, str] = {
    "rdf": str(RDF),
    "rdfs": str(RDFS),
    "dct": str(DCTERMS),
    "foaf": str(FOAF),
    "oslc": OSLC_NS,
    "oslc_rm": OSLC_RM_NS,
    "oslc_rm_1": OSLC_RM_1_NS,
    "oslc_config": OSLC_CONFIG_NS,
    "jazz_nav": JAZZ_NAV_NS,
    "ibm_nav": IBM_NAV_NS,
}


def server_prefixes(origin: str) -> dict[str, str]:
    """Return :data:`PREFIXES` extended with the server-specific namespaces."""

    base = origin.rstrip("/")
    prefixes = dict(PREFIXES)
    prefixes.update(
        {
            "dng_rm": f"{base}/rm/",
            "dng_type": f"{base}/rm/types/",
            "dng_resource": f"{base}/rm/resources/",
            "dng_folder": f"{base}/rm/folders/",
            "dng_component": f"{base}/rm/cm/component/",
            "dng_baseline": f"{base}/rm/cm/baseline/",
            "dng_user": f"{base}/jts/users/",
        }
    )
    return prefixes


__all__ = [
    "OSLC",
    "OSLC_RM",
    "OSLC_RM_1",
    "OSLC_CONFIG",
    "JAZZ_NAV",
    "IBM_NAV",
    "DCT",
    "RDF",
    "RDFS",
    "MANDATORY_FOLLOW",
    "PREFIXES",
    "server_prefixes",
]
