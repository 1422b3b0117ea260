"""Dependency resolution into an ordered install plan.

Not a constraint solver: no version ranges are intersected. Every name is
resolved to the first candidate under the fixed preference order of
``upkg.index.provider``, and the walk trusts the feed to be consistent.
"""

from __future__ import annotations

import logging
from typing import Iterator, List, Optional, Set, Tuple

from upkg.common.cancellation import CancelToken, check
from upkg.common.logging_utils import extra_context, is_debug_enabled, Timer
from upkg.exceptions import NotFoundError
from upkg.index.depends import Dialect, bare_name, classify, clean_dependencies
from upkg.index.provider import RecordSource
from upkg.models import DependencyKind, InstallPlan, PackageRecord, ResolutionWarning

logger = logging.getLogger(__name__)


class DependencyResolver:
    """Walks the dependency closure of a requested name.

    The walk is an explicit worklist (iterative post-order depth-first), so a
    dependency is always placed in the plan before any package that needs it
    and deep chains cannot exhaust the interpreter stack.
    """

    def __init__(self, source: RecordSource, dialect: Dialect, arch: Optional[str] = None):
        self.source = source
        self.dialect = dialect
        self.arch = arch

    def find(self, name: str, version: Optional[str] = None) -> Optional[PackageRecord]:
        """Resolve one capability name to a record, or None.

        Direct name lookup comes first; provider lookup is the fallback. A
        pinned ``version`` filters direct candidates only.
        """
        candidates = self.source.lookup(name)
        if version:
            candidates = [r for r in candidates if r.matches_version(version)]
        record = self.source.best(candidates, self.arch)
        if record is not None:
            return record
        if version:
            return None
        return self.source.best(self.source.providers(name), self.arch)

    def find_any(self, alternatives: List[str]) -> Tuple[Optional[PackageRecord], str]:
        """First alternative that resolves; returns ``(record, token_used)``."""
        for alt in alternatives:
            record = self.find(alt)
            if record is not None:
                return record, alt
        return None, alternatives[0]

    def dependencies_of(self, record: PackageRecord) -> List[List[str]]:
        return clean_dependencies(record, self.dialect)

    def resolve(
        self,
        name: str,
        version: Optional[str] = None,
        *,
        cancel: Optional[CancelToken] = None,
        visited: Optional[Set[str]] = None,
        with_dependencies: bool = True,
    ) -> InstallPlan:
        """Build the install plan for ``name``.

        Args:
            name: Requested package or capability; version constraints in the
                token are stripped.
            version: Optional pinned version for the requested node only.
            cancel: Checked once per visited node.
            visited: Caller-owned set of canonical names already handled;
                names in it are skipped and new ones are added. Share it
                across calls to install several roots without repeats.
            with_dependencies: When False the plan holds the primary only.

        Returns:
            Plan with dependencies before dependents; the requested record is last.

        Raises:
            NotFoundError: the requested name resolves to nothing.
        """
        visited = set() if visited is None else visited
        plan = InstallPlan(requested=name)
        token = bare_name(name, self.dialect) or name.strip()

        with Timer() as t:
            check(cancel, "resolve")
            root = self.find(token, version)
            if root is None:
                suffix = f" version {version}" if version else ""
                raise NotFoundError(f"no package or provider for {token}{suffix}", op="resolve", package=token)
            if root.name in visited:
                logger.debug("%s already handled by an earlier resolve", root.name)
                return plan
            visited.add(root.name)

            if not with_dependencies:
                plan.records.append(root)
                return plan

            failed: Set[str] = set()
            stack: List[Tuple[PackageRecord, Iterator[List[str]]]] = [
                (root, iter(self.dependencies_of(root)))
            ]
            while stack:
                record, deps = stack[-1]
                group = next(deps, None)
                if group is None:
                    stack.pop()
                    plan.records.append(record)
                    continue

                key = group[0]
                if key in failed or any(alt in visited for alt in group):
                    continue
                check(cancel, "resolve")
                dep, used = self.find_any(group)
                if dep is None:
                    failed.add(key)
                    self._soft_fail(plan, used, record, " | ".join(group))
                    continue
                if dep.name in visited:
                    continue
                visited.add(dep.name)
                if is_debug_enabled(logger):
                    logger.debug(
                        "Resolved dependency",
                        extra=extra_context(
                            event="dependency_resolved",
                            component="resolver",
                            token=used,
                            package=dep.name,
                            requested_by=record.name,
                        ),
                    )
                stack.append((dep, iter(self.dependencies_of(dep))))

        logger.info(
            "Resolved %s to %d package(s) with %d warning(s) in %d ms",
            root.name, len(plan), len(plan.warnings), t.duration_ms(),
        )
        return plan

    def _soft_fail(self, plan: InstallPlan, token: str, requested_by: PackageRecord, group: str) -> None:
        kind = classify(token)
        warning = ResolutionWarning(
            token=group,
            requested_by=requested_by.name,
            kind=kind,
            reason="no matching package or provider",
        )
        plan.warnings.append(warning)
        if kind is DependencyKind.FILE:
            logger.debug("%s", warning)
        else:
            logger.warning("%s", warning)
