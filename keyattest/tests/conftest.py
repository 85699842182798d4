from __future__ import annotations

import logging

import pytest

from keyattest import logging as klog
from keyattest.anchors import TrustAnchorSet

from .builders import SyntheticChain, build_chain, rsa_key


@pytest.fixture(scope="session")
def root_key():
    return rsa_key()


@pytest.fixture(scope="session")
def chain(root_key) -> SyntheticChain:
    return build_chain(root_key=root_key)


@pytest.fixture(scope="session")
def anchors(chain: SyntheticChain) -> TrustAnchorSet:
    return TrustAnchorSet.from_certificates([chain.root], vendor="test")


@pytest.fixture(autouse=True)
def _reset_keyattest_logger():
    """CLI tests call configure(); give every test a pristine logger tree."""
    yield
    logger = logging.getLogger(klog.ROOT_LOGGER)
    for h in list(logger.handlers):
        logger.removeHandler(h)
    logger.setLevel(logging.NOTSET)
    logger.propagate = True
    klog.clear_context()
