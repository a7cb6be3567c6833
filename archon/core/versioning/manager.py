# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Workflow version management.

Versions are immutable snapshots. Branches are mutable pointers to a head
version and only move through a compare-and-swap on ``head_version_id``,
so two concurrent commits to one branch cannot both succeed.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from ...store.base import Entity, EntityStore, new_id
from ..audit import AuditLog, AuditSeverity
from ..exceptions import (
    ActiveRunsError,
    ConcurrentUpdateError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ProtectedBranchError,
    StoreUnavailableError,
    ValidationError,
)
from ..spec import CollaborationStrategy, NodeType, WorkflowSpec, load_spec
from .diff import diff_specs
from .merge import merge_specs, parse_strategy
from .models import (
    BranchStatus,
    ChangeType,
    MergeOutcome,
    MergeStrategy,
    Workflow,
    WorkflowBranch,
    WorkflowVersion,
    increment_version,
)

logger = logging.getLogger("archon.versioning")

INITIAL_VERSION = "1.0.0"
DEFAULT_BRANCH = "main"
AGENT_COST_CENTS = 15
DEFAULT_ROLLBACK_ROLES = ("admin", "owner", "operator")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class VersionManager:
    """Manages workflows, their versions and branches."""

    def __init__(
        self,
        store: EntityStore,
        audit: Optional[AuditLog] = None,
        rollback_roles: Optional[Iterable[str]] = None,
    ):
        self.store = store
        self.audit = audit or AuditLog(store)
        self.rollback_roles = set(rollback_roles or DEFAULT_ROLLBACK_ROLES)

    # ==========================================================================
    # Lookups
    # ==========================================================================

    async def get_workflow(self, workflow_id: str) -> Workflow:
        record = await self.store.get(Entity.WORKFLOW, workflow_id)
        if record is None:
            raise NotFoundError(
                "Workflow not found", entity=Entity.WORKFLOW.value, entity_id=workflow_id
            )
        return Workflow.model_validate(record)

    async def get_version(self, version_id: str) -> WorkflowVersion:
        record = await self.store.get(Entity.WORKFLOW_VERSION, version_id)
        if record is None:
            raise NotFoundError(
                "Version not found", entity=Entity.WORKFLOW_VERSION.value, entity_id=version_id
            )
        return WorkflowVersion.model_validate(record)

    async def get_branch(self, branch_id: str) -> WorkflowBranch:
        record = await self.store.get(Entity.WORKFLOW_BRANCH, branch_id)
        if record is None:
            raise NotFoundError(
                "Branch not found", entity=Entity.WORKFLOW_BRANCH.value, entity_id=branch_id
            )
        return WorkflowBranch.model_validate(record)

    async def find_version(self, workflow_id: str, version: str) -> Optional[WorkflowVersion]:
        """Retrieve a version by its semantic version string."""
        records = await self.store.filter(
            Entity.WORKFLOW_VERSION,
            {"workflow_id": workflow_id, "version": version},
            sort="-version_number",
            limit=1,
        )
        return WorkflowVersion.model_validate(records[0]) if records else None

    async def list_versions(self, workflow_id: str, limit: int = 50) -> List[WorkflowVersion]:
        """List versions of a workflow, newest first."""
        records = await self.store.filter(
            Entity.WORKFLOW_VERSION,
            {"workflow_id": workflow_id},
            sort="-version_number",
            limit=limit,
        )
        return [WorkflowVersion.model_validate(r) for r in records]

    async def list_branches(self, workflow_id: str) -> List[WorkflowBranch]:
        records = await self.store.filter(Entity.WORKFLOW_BRANCH, {"workflow_id": workflow_id})
        return [WorkflowBranch.model_validate(r) for r in records]

    async def default_branch(self, workflow_id: str) -> WorkflowBranch:
        records = await self.store.filter(
            Entity.WORKFLOW_BRANCH, {"workflow_id": workflow_id, "is_default": True}, limit=1
        )
        if not records:
            raise NotFoundError(
                "Default branch not found",
                entity=Entity.WORKFLOW_BRANCH.value,
                hint="Create the workflow through createWorkflow to get a main branch",
            )
        return WorkflowBranch.model_validate(records[0])

    async def _resolve_branch(self, workflow_id: str, branch_id: Optional[str]) -> WorkflowBranch:
        branch = await self.get_branch(branch_id) if branch_id else await self.default_branch(workflow_id)
        if branch.workflow_id != workflow_id:
            raise ValidationError(
                "Branch belongs to a different workflow", field="branch_id", value=branch_id
            )
        return branch

    # ==========================================================================
    # Commits
    # ==========================================================================

    async def _create_version(
        self,
        workflow_id: str,
        version: str,
        version_number: int,
        spec: Union[WorkflowSpec, Dict[str, Any]],
        change_summary: str,
        change_type: ChangeType,
        created_by: Optional[str],
        parent_version_id: Optional[str] = None,
        branch_id: Optional[str] = None,
    ) -> WorkflowVersion:
        data = {
            "workflow_id": workflow_id,
            "version": version,
            "version_number": version_number,
            "spec": load_spec(spec).to_dict(),
            "change_summary": change_summary,
            "change_type": ChangeType(change_type).value,
            "parent_version_id": parent_version_id,
            "branch_id": branch_id,
            "created_by": created_by,
        }
        record = await self.store.create(Entity.WORKFLOW_VERSION, data)
        return WorkflowVersion.model_validate(record)

    async def _compare_and_swap(
        self,
        entity: Entity,
        entity_id: str,
        changes: Dict[str, Any],
        expected: Dict[str, Any],
    ) -> Dict[str, Any]:
        """
        Conditional update that survives a lost answer.

        When the store fails without saying whether the write landed, the
        record is read back. If it already carries ``changes`` the update is
        taken as applied; otherwise the store error is raised.
        """
        try:
            return await self.store.update(entity, entity_id, changes, expected=expected)
        except StoreUnavailableError:
            record = await self.store.get(entity, entity_id)
            if record is not None and all(record.get(k) == v for k, v in changes.items()):
                logger.warning(f"{entity.value} {entity_id}: update confirmed after store error")
                return record
            raise

    async def _commit_to_branch(
        self,
        branch: WorkflowBranch,
        head: WorkflowVersion,
        spec: Union[WorkflowSpec, Dict[str, Any]],
        change_summary: str,
        change_type: ChangeType,
        actor: Optional[str],
    ) -> WorkflowVersion:
        """
        Create a version on top of ``head`` and move the branch to it.

        Raises:
            ConcurrentUpdateError: If the branch head moved since ``head`` was
                read. The new version is deleted again.
        """
        version = await self._create_version(
            workflow_id=branch.workflow_id,
            version=increment_version(head.version, change_type),
            version_number=head.version_number + 1,
            spec=spec,
            change_summary=change_summary,
            change_type=change_type,
            created_by=actor,
            parent_version_id=head.id,
            branch_id=branch.id,
        )

        try:
            await self._compare_and_swap(
                Entity.WORKFLOW_BRANCH,
                branch.id,
                {"head_version_id": version.id},
                expected={"head_version_id": head.id},
            )
        except ConcurrentUpdateError:
            logger.warning(
                f"Branch {branch.name} moved during commit; discarding version {version.id}"
            )
            await self.store.delete(Entity.WORKFLOW_VERSION, version.id)
            raise

        logger.info(f"Committed {version.version} to branch {branch.name}")
        return version

    async def _sync_workflow(self, workflow_id: str, version: WorkflowVersion):
        """Mirror the committed spec/version onto the Workflow record"""
        await self.store.update(
            Entity.WORKFLOW,
            workflow_id,
            {"spec": version.spec.to_dict(), "version": version.version},
        )

    # ==========================================================================
    # Workflows
    # ==========================================================================

    async def create_workflow(
        self,
        name: Optional[str],
        actor: Optional[str],
        description: str = "",
        nodes: Optional[List[Dict[str, Any]]] = None,
        edges: Optional[List[Dict[str, Any]]] = None,
        collaboration_strategy: Optional[str] = None,
        tags: Optional[List[str]] = None,
    ) -> Tuple[Workflow, WorkflowVersion, WorkflowBranch]:
        """
        Create a workflow with its initial version and default branch.

        Returns:
            (workflow, initial version, main branch)
        """
        if not name or not str(name).strip():
            raise ValidationError(
                "Workflow name is required",
                field="name",
                hint="Provide a non-empty name",
            )

        strategy = collaboration_strategy or CollaborationStrategy.SEQUENTIAL.value
        spec = load_spec(
            {"nodes": nodes or [], "edges": edges or [], "collaboration_strategy": strategy}
        )
        spec_data = spec.to_dict()
        spec_data["estimated_cost_cents"] = AGENT_COST_CENTS * len(
            spec.nodes_of_type(NodeType.AGENT)
        )

        workflow_record = await self.store.create(
            Entity.WORKFLOW,
            {
                "name": name,
                "description": description,
                "status": "active",
                "spec": spec_data,
                "version": INITIAL_VERSION,
                "tags": tags or [],
            },
        )
        workflow = Workflow.model_validate(workflow_record)

        branch_id = new_id()
        version = await self._create_version(
            workflow_id=workflow.id,
            version=INITIAL_VERSION,
            version_number=1,
            spec=spec_data,
            change_summary="Initial workflow creation",
            change_type=ChangeType.MAJOR,
            created_by=actor,
            branch_id=branch_id,
        )

        branch_record = await self.store.create(
            Entity.WORKFLOW_BRANCH,
            {
                "id": branch_id,
                "workflow_id": workflow.id,
                "name": DEFAULT_BRANCH,
                "description": "Default branch",
                "head_version_id": version.id,
                "base_version_id": version.id,
                "is_protected": False,
                "is_default": True,
                "status": BranchStatus.ACTIVE.value,
                "created_by": actor,
            },
        )

        await self.audit.record(
            action="create",
            entity=Entity.WORKFLOW.value,
            entity_id=workflow.id,
            actor=actor,
            after={"name": name, "version": INITIAL_VERSION},
            metadata={"node_count": len(spec.nodes)},
        )

        logger.info(f"Created workflow {workflow.id} ({name})")
        return workflow, version, WorkflowBranch.model_validate(branch_record)

    # ==========================================================================
    # Branches
    # ==========================================================================

    async def create_branch(
        self,
        workflow_id: str,
        name: str,
        actor: Optional[str],
        description: str = "",
        from_branch_id: Optional[str] = None,
        is_protected: bool = False,
    ) -> WorkflowBranch:
        """Fork a branch at the head of ``from_branch_id`` (default branch if omitted)."""
        if not name:
            raise ValidationError("Branch name is required", field="name")

        await self.get_workflow(workflow_id)
        base = await self._resolve_branch(workflow_id, from_branch_id)

        for branch in await self.list_branches(workflow_id):
            if branch.name == name and branch.status == BranchStatus.ACTIVE:
                raise ConflictError(f"Branch {name} already exists")

        record = await self.store.create(
            Entity.WORKFLOW_BRANCH,
            {
                "workflow_id": workflow_id,
                "name": name,
                "description": description,
                "head_version_id": base.head_version_id,
                "base_version_id": base.head_version_id,
                "is_protected": is_protected,
                "is_default": False,
                "status": BranchStatus.ACTIVE.value,
                "created_by": actor,
            },
        )
        branch = WorkflowBranch.model_validate(record)

        await self.audit.record(
            action="create_branch",
            entity=Entity.WORKFLOW_BRANCH.value,
            entity_id=branch.id,
            actor=actor,
            metadata={"workflow_id": workflow_id, "name": name, "from_branch_id": base.id},
        )
        return branch

    async def archive_branch(self, branch_id: str, actor: Optional[str]) -> WorkflowBranch:
        branch = await self.get_branch(branch_id)
        if branch.is_default:
            raise ConflictError("The default branch cannot be archived")

        record = await self.store.update(
            Entity.WORKFLOW_BRANCH, branch_id, {"status": BranchStatus.ARCHIVED.value}
        )
        await self.audit.record(
            action="archive_branch",
            entity=Entity.WORKFLOW_BRANCH.value,
            entity_id=branch_id,
            actor=actor,
            metadata={"workflow_id": branch.workflow_id, "name": branch.name},
        )
        return WorkflowBranch.model_validate(record)

    # ==========================================================================
    # Save / restore
    # ==========================================================================

    async def save_version(
        self,
        workflow_id: str,
        spec: Union[WorkflowSpec, Dict[str, Any]],
        actor: Optional[str],
        change_summary: str = "",
        branch_id: Optional[str] = None,
        change_type: Union[ChangeType, str] = ChangeType.PATCH,
    ) -> WorkflowVersion:
        """Commit an edited spec to a branch."""
        await self.get_workflow(workflow_id)
        branch = await self._resolve_branch(workflow_id, branch_id)
        if branch.status != BranchStatus.ACTIVE:
            raise ConflictError(f"Branch {branch.name} is {branch.status.value}")

        head = await self.get_version(branch.head_version_id)
        version = await self._commit_to_branch(
            branch,
            head,
            spec,
            change_summary or "Saved workflow changes",
            change_type,
            actor,
        )

        if branch.is_default:
            await self._sync_workflow(workflow_id, version)

        await self.audit.record(
            action="save_version",
            entity=Entity.WORKFLOW_VERSION.value,
            entity_id=version.id,
            actor=actor,
            metadata={"workflow_id": workflow_id, "branch_id": branch.id, "version": version.version},
        )
        return version

    async def restore_version(
        self,
        workflow_id: str,
        version_id: str,
        actor: Optional[str],
        branch_id: Optional[str] = None,
    ) -> WorkflowVersion:
        """Commit an old version's spec as a new patch version."""
        old = await self.get_version(version_id)
        if old.workflow_id != workflow_id:
            raise ValidationError(
                "Version belongs to a different workflow", field="version_id", value=version_id
            )

        branch = await self._resolve_branch(workflow_id, branch_id)
        head = await self.get_version(branch.head_version_id)
        version = await self._commit_to_branch(
            branch,
            head,
            old.spec,
            f"Rolled back to version {old.version}",
            ChangeType.PATCH,
            actor,
        )
        await self._sync_workflow(workflow_id, version)

        await self.audit.record(
            action="restore_version",
            entity=Entity.WORKFLOW.value,
            entity_id=workflow_id,
            actor=actor,
            severity=AuditSeverity.WARNING,
            metadata={"restored_version": old.version, "new_version": version.version},
        )
        return version

    # ==========================================================================
    # Merge
    # ==========================================================================

    async def merge_branch(
        self,
        source_branch_id: Optional[str],
        target_branch_id: Optional[str],
        actor: Optional[str],
        strategy: Union[MergeStrategy, str, None] = MergeStrategy.AUTO,
        conflict_resolution: Optional[Dict[str, Any]] = None,
    ) -> MergeOutcome:
        """
        Merge the head of one branch into another.

        Returns:
            MergeOutcome with status ``success`` or ``conflicts``. Nothing is
            written when conflicts remain.

        Raises:
            ProtectedBranchError: If the target branch is protected
            ConcurrentUpdateError: If the target head moved during the merge
        """
        if not source_branch_id or not target_branch_id:
            raise ValidationError("Missing branch IDs", status_code=400)
        strategy = parse_strategy(strategy)

        if source_branch_id == target_branch_id:
            raise ValidationError("Cannot merge a branch into itself", status_code=400)

        source_branch, target_branch = await asyncio.gather(
            self.get_branch(source_branch_id), self.get_branch(target_branch_id)
        )
        if source_branch.workflow_id != target_branch.workflow_id:
            raise ValidationError("Branches belong to different workflows")

        if target_branch.is_protected:
            raise ProtectedBranchError(target_branch.id, target_branch.name)

        if source_branch.status != BranchStatus.ACTIVE:
            raise ConflictError(f"Branch {source_branch.name} is {source_branch.status.value}")

        source_version, target_version = await asyncio.gather(
            self.get_version(source_branch.head_version_id),
            self.get_version(target_branch.head_version_id),
        )

        result = merge_specs(
            source_version.spec, target_version.spec, strategy, conflict_resolution
        )
        if result.has_conflicts:
            logger.info(
                f"Merge {source_branch.name} -> {target_branch.name}: "
                f"{len(result.conflicts)} unresolved conflicts"
            )
            return MergeOutcome(status="conflicts", conflicts=result.conflicts)

        merged_version = await self._commit_to_branch(
            target_branch,
            target_version,
            result.merged_spec,
            f"Merged branch {source_branch.name} into {target_branch.name}",
            ChangeType.MINOR,
            actor,
        )
        await self._sync_workflow(target_branch.workflow_id, merged_version)

        if target_branch.is_default:
            await self.store.update(
                Entity.WORKFLOW_BRANCH,
                source_branch.id,
                {
                    "status": BranchStatus.MERGED.value,
                    "merged_at": _now(),
                    "merged_by": actor,
                },
            )

        await self.audit.record(
            action="merge",
            entity=Entity.WORKFLOW_BRANCH.value,
            entity_id=target_branch.id,
            actor=actor,
            metadata={
                "workflow_id": target_branch.workflow_id,
                "source_branch_id": source_branch.id,
                "strategy": strategy.value,
                "version": merged_version.version,
                "conflicts_resolved": len(result.resolved),
            },
        )

        return MergeOutcome(
            status="success",
            merged_version=merged_version,
            conflicts_resolved=len(result.resolved),
        )

    # ==========================================================================
    # Compare
    # ==========================================================================

    async def compare_versions(
        self, version_id_a: Optional[str], version_id_b: Optional[str]
    ) -> Dict[str, Any]:
        """Diff two stored versions (A is the older side)."""
        if not version_id_a or not version_id_b:
            raise ValidationError("Missing version IDs", status_code=400)

        version_a, version_b = await asyncio.gather(
            self.get_version(version_id_a), self.get_version(version_id_b)
        )
        diff = diff_specs(version_a.spec, version_b.spec)

        return {
            "version_a": version_a.summary(),
            "version_b": version_b.summary(),
            "diff": diff.model_dump(mode="json"),
        }

    # ==========================================================================
    # Rollback
    # ==========================================================================

    async def rollback(
        self,
        workflow_id: Optional[str],
        target_version: Optional[str],
        actor: Optional[str],
        role: Optional[str],
        reason: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Roll a workflow back to an earlier version.

        The current spec is saved as a backup version first. The workflow
        lands in ``draft`` and its deployments are marked ``degraded`` until
        it is re-activated.

        Raises:
            ForbiddenError: If ``role`` may not roll back
            ActiveRunsError: If runs are still in progress
        """
        if role not in self.rollback_roles:
            raise ForbiddenError(
                "Insufficient permissions",
                hint=f"Rollback requires one of: {', '.join(sorted(self.rollback_roles))}",
            )
        if not workflow_id or not target_version:
            raise ValidationError("Missing workflow_id or target_version", status_code=400)

        workflow = await self.get_workflow(workflow_id)
        current_version = workflow.version

        target = await self.find_version(workflow_id, target_version)
        if target is None:
            raise NotFoundError(
                f"Version {target_version} not found",
                entity=Entity.WORKFLOW_VERSION.value,
            )

        active_runs = await self.store.filter(
            Entity.RUN, {"workflow_id": workflow_id, "status": "running"}
        )
        if active_runs:
            raise ActiveRunsError(workflow_id, len(active_runs))

        latest = await self.list_versions(workflow_id, limit=1)
        backup = await self._create_version(
            workflow_id=workflow_id,
            version=current_version,
            version_number=(latest[0].version_number + 1) if latest else 1,
            spec=workflow.spec,
            change_summary=f"Backup before rollback to {target_version}",
            change_type=ChangeType.PATCH,
            created_by=actor,
        )

        rolled_back_at = _now()
        try:
            await self._compare_and_swap(
                Entity.WORKFLOW,
                workflow_id,
                {
                    "spec": target.spec.to_dict(),
                    "version": target_version,
                    "status": "draft",
                },
                expected={"version": current_version},
            )
        except ConcurrentUpdateError:
            await self.store.delete(Entity.WORKFLOW_VERSION, backup.id)
            raise

        await self.audit.record(
            action="rollback",
            entity=Entity.WORKFLOW.value,
            entity_id=workflow_id,
            actor=actor,
            severity=AuditSeverity.WARNING,
            before={"version": current_version, "status": workflow.status},
            after={"version": target_version, "status": "draft"},
            metadata={"reason": reason, "rolled_back_at": rolled_back_at},
        )

        deployments = await self.store.filter(
            Entity.DEPLOYMENT_ENVIRONMENT, {"workflow_id": workflow_id}
        )
        for deployment in deployments:
            await self.store.update(
                Entity.DEPLOYMENT_ENVIRONMENT,
                deployment["id"],
                {
                    "version": target_version,
                    "status": "degraded",
                    "deployed_at": rolled_back_at,
                    "deployed_by": actor,
                },
            )

        logger.warning(
            f"Workflow {workflow_id} rolled back {current_version} -> {target_version}"
        )
        return {
            "success": True,
            "workflow_id": workflow_id,
            "previous_version": current_version,
            "current_version": target_version,
            "status": "draft",
            "message": "Rollback successful. Re-activate workflow to deploy.",
            "rolled_back_at": rolled_back_at,
        }
