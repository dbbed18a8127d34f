import base64
import copy
from typing import Dict, List, Optional
from kubernetes_asyncio.client import (
    V1Container,
    V1EnvFromSource,
    V1EnvVar,
    V1Job,
    V1JobSpec,
    V1KeyToPath,
    V1ObjectMeta,
    V1PersistentVolumeClaim,
    V1PersistentVolumeClaimSpec,
    V1PersistentVolumeClaimVolumeSource,
    V1PodSecurityContext,
    V1PodSpec,
    V1PodTemplateSpec,
    V1Secret,
    V1SecretEnvSource,
    V1SecretVolumeSource,
    V1Volume,
    V1VolumeMount,
    V1VolumeResourceRequirements,
)
import kopf
from porter_operator.common.models.labels import Labels
from porter_operator.resources.base import BaseCustomResource
from porter_operator.resources.lifecycle import is_deleted
from porter_operator.resources.config import (
    ResolvedAgentConfig,
    prepare_porter_config_document,
    resolve_agent_config,
    resolve_porter_config,
)
from porter_operator.resources.status import (
    CONDITION_COMPLETED,
    CONDITION_FAILED,
    CONDITION_SCHEDULED,
    CONDITION_STARTED,
    PHASE_FAILED,
    PHASE_PENDING,
    PHASE_RUNNING,
    PHASE_SUCCEEDED,
    PHASE_UNKNOWN,
    patch_status,
    set_condition,
)
from porter_operator.types.models import AgentActionSpec
from porter_operator.types.schemas import AgentActionSpecSchema
from porter_operator.utils.errors import AgentConfigNotReady
from porter_operator.utils.helpers import md5_hex

DOCKER_CONFIG_JSON = "kubernetes.io/dockerconfigjson"


def retry_label_value(retry: Optional[str]) -> str:
    """Label-safe digest of a retry annotation."""
    return md5_hex(retry) if retry else ""


def _job_condition_true(job: V1Job, type: str) -> bool:
    for cond in (job.status.conditions if job.status else None) or []:
        if cond.type == type and cond.status == "True":
            return True
    return False


def apply_job_to_status(status: Optional[Dict], generation: int, job: Optional[V1Job]) -> Dict:
    """Derive an AgentAction's status from the Job running it.

    Conditions are only ever added while a Job exists; the phase is recomputed
    from scratch on every call.
    """
    status = dict(status or {})
    status["observedGeneration"] = generation
    status["phase"] = PHASE_UNKNOWN

    if job is None:
        status["job"] = None
        status["conditions"] = []
        return status

    conditions = list(status.get("conditions") or [])
    status["job"] = {"name": job.metadata.name}
    status["phase"] = PHASE_PENDING
    conditions = set_condition(conditions, CONDITION_SCHEDULED, "JobCreated", generation)

    job_status = job.status
    if job_status is not None:
        if (job_status.active or 0) + (job_status.failed or 0) + (job_status.succeeded or 0) > 0:
            status["phase"] = PHASE_RUNNING
            conditions = set_condition(conditions, CONDITION_STARTED, "JobStarted", generation)

        if _job_condition_true(job, "Complete"):
            status["phase"] = PHASE_SUCCEEDED
            conditions = set_condition(conditions, CONDITION_COMPLETED, "JobCompleted", generation)
        elif _job_condition_true(job, "Failed"):
            status["phase"] = PHASE_FAILED
            conditions = set_condition(conditions, CONDITION_FAILED, "JobFailed", generation)

    status["conditions"] = conditions
    return status


class AgentAction(BaseCustomResource):
    """Runs one porter command in a Job and mirrors the Job's progress in its status.

    Everything the Job needs (a shared workspace claim, the porter config, the
    input files and an optional registry credential) is provisioned next to it
    and found again by labels, so an interrupted dispatch resumes where it left
    off instead of creating duplicates.
    """

    KIND = "AgentAction"
    PLURAL_NAME = "agentactions"

    CONTAINER_NAME = "porter-agent"

    VOLUME_SHARED_NAME = "porter-shared"
    VOLUME_SHARED_PATH = "/porter-shared"
    VOLUME_CONFIG_NAME = "porter-config"
    VOLUME_CONFIG_PATH = "/porter-config"
    VOLUME_WORKDIR_NAME = "porter-workdir"
    VOLUME_WORKDIR_PATH = "/porter-workdir"
    VOLUME_IMG_PULL_SECRET_NAME = "img-pull-secret"
    VOLUME_IMG_PULL_SECRET_PATH = "/home/nonroot"
    VOLUME_PLUGINS_NAME = "porter-plugins"
    VOLUME_PLUGINS_PATH = "/app/.porter/plugins"

    PLUGIN_ENV_SECRET = "porter-env"
    CONFIG_FILE = "config.yaml"

    RUN_AS_USER = 65532
    RUN_AS_GROUP = 0
    FS_GROUP = 0

    spec: AgentActionSpec = None

    def load(self, body: Dict) -> None:
        super().load(body)
        self.spec = AgentActionSpecSchema().load((body or {}).get("spec") or {})

    @property
    def created_by_agent_config(self) -> bool:
        """The action installs plugins for an AgentConfig."""
        for ref in self.metadata.get("ownerReferences") or []:
            if ref.get("controller") and ref.get("kind") == "AgentConfig":
                return True
        return False

    @property
    def retry_digest(self) -> str:
        """Digest of the retry this action runs for.

        Owners record it in the retry label when they hand a retry over. Actions
        created without the label follow their retry annotation.
        """
        if Labels.RETRY_LABEL in self.labels:
            return self.labels[Labels.RETRY_LABEL]
        return retry_label_value(self.retry)

    def shared_labels(self) -> Labels:
        """Labels on everything created for this generation and retry of the action."""
        return Labels.generate_resource_labels(
            self.KIND, self.name, self.generation, self.retry_digest
        ).include_missing(self.labels)

    def job_labels(self) -> Labels:
        return self.shared_labels().include_job_type(Labels.JOB_TYPE_AGENT)

    def installer_labels(self) -> str:
        """Labels porter applies to the bundle installer, in command line form."""
        return self.shared_labels().include_job_type(Labels.JOB_TYPE_INSTALLER).as_sorted_str()

    def affinity_labels(self) -> str:
        labels = Labels.generate_resource_labels(self.KIND, self.name, self.generation, self.retry_digest)
        return " ".join(
            f"{key}={labels.get(key)}"
            for key in (
                Labels.RESOURCE_KIND_LABEL,
                Labels.RESOURCE_NAME_LABEL,
                Labels.RESOURCE_GENERATION_LABEL,
                Labels.RETRY_LABEL,
            )
        )

    def owned_metadata(self, labels: Labels, **kwargs) -> V1ObjectMeta:
        return V1ObjectMeta(
            generate_name=f"{self.name}-",
            namespace=self.namespace,
            labels=labels.as_dict(),
            **kwargs,
        )

    def adopt(self, obj) -> None:
        kopf.append_owner_reference(obj, owner=self.body, controller=True, block_owner_deletion=True)

    # =============================================================================
    # Reconcile
    # =============================================================================

    async def reconcile(self) -> Optional[Dict]:
        """Bring the action one step closer to a finished Job.

        Returns the latest body of the action, or None when it no longer exists.
        """
        if await self.fetch() is None:
            self.logger.debug(f"{self.KIND} {self.name} not found, nothing to do.")
            return None

        job = await self.fetch_job()
        await self.sync_status(job)
        if job is not None:
            self.logger.debug(f"Job {job.metadata.name} already exists for {self.KIND} {self.name}.")
            return self.body

        if is_deleted(self.body):
            self.logger.debug(f"{self.KIND} {self.name} is being deleted, not starting a job.")
            return self.body

        await self.run_porter()
        return self.body

    async def sync_status(self, job: Optional[V1Job]) -> None:
        await patch_status(self, lambda status, body: apply_job_to_status(
            status, int(body["metadata"].get("generation") or 0), job
        ))

    async def fetch_job(self) -> Optional[V1Job]:
        jobs = await self.list_jobs(self.batch_v1_api, self.namespace, self.job_labels().as_str())
        if len(jobs) > 1:
            self.logger.warning(
                f"Found {len(jobs)} jobs for {self.KIND} {self.name}, using {jobs[0].metadata.name}."
            )
        return jobs[0] if jobs else None

    async def run_porter(self) -> V1Job:
        """Provision the agent's dependencies and start the Job."""
        agent_cfg = await resolve_agent_config(
            self, self.namespace, self.spec.agent_config.name if self.spec.agent_config else None
        )
        if self.created_by_agent_config:
            # Installing plugins is what makes an AgentConfig ready
            self.logger.debug(f"{self.KIND} {self.name} was created by an AgentConfig, skipping the readiness check.")
        elif agent_cfg.found and not agent_cfg.ready:
            source_namespace, _, source_name = agent_cfg.source.partition("/")
            raise AgentConfigNotReady(source_name, source_namespace)

        porter_cfg = await resolve_porter_config(
            self, self.namespace, self.spec.porter_config.name if self.spec.porter_config else None
        )

        pvc = await self.ensure_agent_volume(agent_cfg)
        config_secret = await self.ensure_config_secret(prepare_porter_config_document(porter_cfg))
        workdir_secret = await self.ensure_workdir_secret()
        img_pull_secret = await self.ensure_image_pull_secret(agent_cfg)

        job = await self.create_agent_job(agent_cfg, pvc, config_secret, workdir_secret, img_pull_secret)
        await self.sync_status(job)
        return job

    # =============================================================================
    # Dependencies
    # =============================================================================

    async def ensure_agent_volume(self, agent_cfg: ResolvedAgentConfig) -> V1PersistentVolumeClaim:
        labels = self.shared_labels()
        existing = await self.list_persistent_volume_claims(self.core_v1_api, self.namespace, labels.as_str())
        if existing:
            return existing[0]

        pvc = self.prepare_agent_volume(agent_cfg)
        async with self.track_resource_sync("PersistentVolumeClaim", pvc.metadata.generate_name, "create"):
            pvc = await self.create_persistent_volume_claim(self.core_v1_api, self.namespace, pvc)
        self.logger.info(f"Created agent volume {pvc.metadata.name} for {self.KIND} {self.name}.")
        return pvc

    def prepare_agent_volume(self, agent_cfg: ResolvedAgentConfig) -> V1PersistentVolumeClaim:
        pvc = V1PersistentVolumeClaim(
            api_version="v1",
            kind="PersistentVolumeClaim",
            metadata=self.owned_metadata(self.shared_labels()),
            spec=V1PersistentVolumeClaimSpec(
                access_modes=["ReadWriteOnce"],
                storage_class_name=agent_cfg.storage_class_name,
                resources=V1VolumeResourceRequirements(
                    requests={"storage": agent_cfg.volume_size}
                ),
            ),
        )
        self.adopt(pvc)
        return pvc

    async def _ensure_secret(self, secret_type: str, prepare) -> V1Secret:
        labels = self.shared_labels().include_secret_type(secret_type)
        existing = await self.list_secrets(self.core_v1_api, self.namespace, labels.as_str())
        if existing:
            return existing[0]

        secret = prepare(labels)
        self.adopt(secret)
        self.annotate_hash(secret)
        async with self.track_resource_sync("Secret", secret.metadata.generate_name, "create"):
            secret = await self.create_secret(self.core_v1_api, self.namespace, secret)
        self.logger.info(f"Created {secret_type} secret {secret.metadata.name} for {self.KIND} {self.name}.")
        return secret

    async def ensure_config_secret(self, document: str) -> V1Secret:
        def prepare(labels: Labels) -> V1Secret:
            return V1Secret(
                api_version="v1",
                kind="Secret",
                type="Opaque",
                immutable=True,
                metadata=self.owned_metadata(labels),
                data={self.CONFIG_FILE: base64.b64encode(document.encode()).decode()},
            )

        return await self._ensure_secret(Labels.SECRET_TYPE_CONFIG, prepare)

    async def ensure_workdir_secret(self) -> V1Secret:
        def prepare(labels: Labels) -> V1Secret:
            return V1Secret(
                api_version="v1",
                kind="Secret",
                type="Opaque",
                immutable=True,
                metadata=self.owned_metadata(labels),
                data=dict(self.spec.files or {}),
            )

        return await self._ensure_secret(Labels.SECRET_TYPE_WORKDIR, prepare)

    async def ensure_image_pull_secret(self, agent_cfg: ResolvedAgentConfig) -> Optional[V1Secret]:
        """Copy the registry credential of the installation service account, if it has one."""
        source = await self.find_image_pull_secret(agent_cfg.installation_service_account)
        if source is None:
            return None

        def prepare(labels: Labels) -> V1Secret:
            return V1Secret(
                api_version="v1",
                kind="Secret",
                type=DOCKER_CONFIG_JSON,
                immutable=True,
                metadata=self.owned_metadata(labels),
                data=dict(source.data or {}),
            )

        return await self._ensure_secret(Labels.SECRET_TYPE_IMAGE_PULL, prepare)

    async def find_image_pull_secret(self, service_account: str) -> Optional[V1Secret]:
        account = await self.fetch_service_account(self.core_v1_api, service_account, self.namespace)
        if account is None:
            self.logger.debug(f"Service account {service_account} not found, running without an image pull secret.")
            return None

        refs = account.image_pull_secrets or []
        for ref in refs:
            secret = await self.fetch_secret(self.core_v1_api, ref.name, self.namespace)
            if secret is None or secret.type != DOCKER_CONFIG_JSON:
                continue
            if len(refs) > 1:
                self.logger.debug(
                    f"Service account {service_account} has {len(refs)} image pull secrets, using {ref.name}."
                )
            return secret
        return None

    # =============================================================================
    # Job
    # =============================================================================

    def prepare_env(self, agent_cfg: ResolvedAgentConfig, pvc: V1PersistentVolumeClaim):
        env = [
            V1EnvVar(name="PORTER_RUNTIME_DRIVER", value="kubernetes"),
            V1EnvVar(name="KUBE_NAMESPACE", value=self.namespace),
            V1EnvVar(name="IN_CLUSTER", value="true"),
            V1EnvVar(name="LABELS", value=self.installer_labels()),
            V1EnvVar(name="JOB_VOLUME_NAME", value=pvc.metadata.name),
            V1EnvVar(name="JOB_VOLUME_PATH", value=self.VOLUME_SHARED_PATH),
            V1EnvVar(name="CLEANUP_JOBS", value="false"),
            V1EnvVar(name="SERVICE_ACCOUNT", value=agent_cfg.installation_service_account),
            V1EnvVar(name="AFFINITY_MATCH_LABELS", value=self.affinity_labels()),
        ]
        env.extend(copy.deepcopy(self.spec.env or []))

        env_from = [
            V1EnvFromSource(
                secret_ref=V1SecretEnvSource(name=self.PLUGIN_ENV_SECRET, optional=True)
            )
        ]
        env_from.extend(copy.deepcopy(self.spec.env_from or []))
        return env, env_from

    def prepare_volumes(
        self,
        agent_cfg: ResolvedAgentConfig,
        pvc: V1PersistentVolumeClaim,
        config_secret: V1Secret,
        workdir_secret: V1Secret,
        img_pull_secret: Optional[V1Secret],
    ):
        volumes: List = [
            V1Volume(
                name=self.VOLUME_SHARED_NAME,
                persistent_volume_claim=V1PersistentVolumeClaimVolumeSource(
                    claim_name=pvc.metadata.name
                ),
            ),
            V1Volume(
                name=self.VOLUME_CONFIG_NAME,
                secret=V1SecretVolumeSource(
                    secret_name=config_secret.metadata.name, optional=False
                ),
            ),
            V1Volume(
                name=self.VOLUME_WORKDIR_NAME,
                secret=V1SecretVolumeSource(
                    secret_name=workdir_secret.metadata.name, optional=False
                ),
            ),
        ]
        mounts: List = [
            V1VolumeMount(name=self.VOLUME_SHARED_NAME, mount_path=self.VOLUME_SHARED_PATH),
            V1VolumeMount(name=self.VOLUME_CONFIG_NAME, mount_path=self.VOLUME_CONFIG_PATH),
            V1VolumeMount(name=self.VOLUME_WORKDIR_NAME, mount_path=self.VOLUME_WORKDIR_PATH),
        ]

        if img_pull_secret is not None:
            volumes.append(
                V1Volume(
                    name=self.VOLUME_IMG_PULL_SECRET_NAME,
                    secret=V1SecretVolumeSource(
                        secret_name=img_pull_secret.metadata.name,
                        optional=False,
                        items=[V1KeyToPath(key=".dockerconfigjson", path=".docker/config.json")],
                    ),
                )
            )
            mounts.append(
                V1VolumeMount(
                    name=self.VOLUME_IMG_PULL_SECRET_NAME,
                    mount_path=self.VOLUME_IMG_PULL_SECRET_PATH,
                    read_only=True,
                )
            )

        claim_name = agent_cfg.plugins_claim_name(self.namespace)
        if claim_name and not self.created_by_agent_config:
            volumes.append(
                V1Volume(
                    name=self.VOLUME_PLUGINS_NAME,
                    persistent_volume_claim=V1PersistentVolumeClaimVolumeSource(
                        claim_name=claim_name
                    ),
                )
            )
            mounts.append(
                V1VolumeMount(
                    name=self.VOLUME_PLUGINS_NAME,
                    mount_path=self.VOLUME_PLUGINS_PATH,
                    sub_path="plugins",
                )
            )

        volumes.extend(copy.deepcopy(self.spec.volumes or []))
        mounts.extend(copy.deepcopy(self.spec.volume_mounts or []))
        return volumes, mounts

    def prepare_job(
        self,
        agent_cfg: ResolvedAgentConfig,
        pvc: V1PersistentVolumeClaim,
        config_secret: V1Secret,
        workdir_secret: V1Secret,
        img_pull_secret: Optional[V1Secret],
    ) -> V1Job:
        labels = self.job_labels()
        env, env_from = self.prepare_env(agent_cfg, pvc)
        volumes, mounts = self.prepare_volumes(
            agent_cfg, pvc, config_secret, workdir_secret, img_pull_secret
        )
        job = V1Job(
            api_version="batch/v1",
            kind="Job",
            metadata=self.owned_metadata(labels),
            spec=V1JobSpec(
                completions=1,
                # A failed run is surfaced, never retried by the Job controller
                backoff_limit=0,
                template=V1PodTemplateSpec(
                    metadata=self.owned_metadata(labels),
                    spec=V1PodSpec(
                        containers=[
                            V1Container(
                                name=self.CONTAINER_NAME,
                                image=agent_cfg.porter_image,
                                image_pull_policy=agent_cfg.pull_policy,
                                command=list(self.spec.command or []) or None,
                                args=list(self.spec.args or []) or None,
                                env=env,
                                env_from=env_from,
                                volume_mounts=mounts,
                                working_dir=self.VOLUME_WORKDIR_PATH,
                            )
                        ],
                        volumes=volumes,
                        restart_policy="Never",
                        service_account_name=agent_cfg.service_account,
                        security_context=V1PodSecurityContext(
                            run_as_user=self.RUN_AS_USER,
                            run_as_group=self.RUN_AS_GROUP,
                            fs_group=self.FS_GROUP,
                        ),
                    ),
                ),
            ),
        )
        self.adopt(job)
        self.annotate_hash(job)
        return job

    async def create_agent_job(
        self,
        agent_cfg: ResolvedAgentConfig,
        pvc: V1PersistentVolumeClaim,
        config_secret: V1Secret,
        workdir_secret: V1Secret,
        img_pull_secret: Optional[V1Secret],
    ) -> V1Job:
        job = self.prepare_job(agent_cfg, pvc, config_secret, workdir_secret, img_pull_secret)
        async with self.track_resource_sync("Job", job.metadata.generate_name, "create"):
            job = await self.create_job(self.batch_v1_api, self.namespace, job)
        self.logger.info(
            f"Created job {job.metadata.name} running porter {' '.join(self.spec.args or [])} "
            f"for {self.KIND} {self.name}."
        )
        return job
