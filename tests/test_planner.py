"""
Tests for the install planner, the application provisioner and the
plan DAG helpers.
"""

import pytest

from offsetup.core.models.manifest import Manifest
from offsetup.core.models.plan import (
    PHASE_PORTS,
    PHASE_PRE_INSTALL,
    ApplicationInstall,
    CommandStep,
    DatabaseProvision,
    DownloadExtract,
    EnvBind,
    PackageManagerInstall,
    PortExpose,
    UserProvision,
)
from offsetup.core.models.runtime import RuntimeDescriptor
from offsetup.core.services.dag import (
    enforce_lock_safety,
    needs_system_lock,
    ready_steps,
    topological_order,
    validate_dag,
)
from offsetup.core.services.planner import artifact_dir, build_plan, native_manager, strategies_for
from offsetup.core.services.selector import select_platform

DOWNLOADS = "/var/cache/offsetup"


def _plan(manifest: Manifest, runtime: RuntimeDescriptor):
    return build_plan(manifest, select_platform(manifest, runtime), runtime, DOWNLOADS)


def _manifest(platform: dict, applications: dict | None = None, ports: dict | None = None) -> Manifest:
    return Manifest.model_validate({
        "name": "t",
        "dependencies": {"platforms": {"ubuntu": platform}, "applications": applications or {}},
        "exposes": {"ports": ports or {}},
    })


UBUNTU = RuntimeDescriptor(os_name="ubuntu", os_version="22.04")


class TestPlannerOrdering:
    def test_scenario_ubuntu_redis(self, redis_manifest, ubuntu_runtime):
        plan = _plan(redis_manifest, ubuntu_runtime)
        assert [s.id for s in plan.steps] == [
            "pre_install.0",
            "pre_install.1",
            "apt.redis",
            "source.redis-5.0.4.tar.gz",
            "source.apt.make",
            "source.apt.gcc",
            "source.install.0",
            "source.install.1",
            "port.tcp.6379",
        ]
        assert plan.platform == "ubuntu"
        assert isinstance(plan.steps[0], CommandStep)
        assert isinstance(plan.steps[2], PackageManagerInstall)

    def test_every_step_depends_on_previous(self, redis_manifest, ubuntu_runtime):
        plan = _plan(redis_manifest, ubuntu_runtime)
        for prev, step in zip(plan.steps, plan.steps[1:]):
            assert step.depends_on == [prev.id]
        assert plan.steps[0].depends_on == []

    def test_pre_install_precedes_installs_and_ports_last(self, simple_manifest, ubuntu_runtime):
        plan = _plan(simple_manifest, ubuntu_runtime)
        phases = [s.phase for s in plan.steps]
        assert phases == sorted(phases)
        order = {s.id: i for i, s in enumerate(plan.steps)}
        last_install = max(
            order[s.id] for s in plan.steps if s.kind in ("package", "download", "application")
        )
        first_port = min(order[s.id] for s in plan.by_kind("port"))
        assert last_install < first_port

    def test_pre_install_before_everything(self):
        manifest = _manifest(
            {"pre_install": ["echo hi"], "apt": ["curl"],
             "download": {"uri": "https://e.com/a.bin"}},
            ports={"tcp": [80]},
        )
        plan = _plan(manifest, UBUNTU)
        assert plan.steps[0].phase == PHASE_PRE_INSTALL
        assert plan.steps[-1].phase == PHASE_PORTS

    def test_source_commands_run_in_artifact_dir(self, redis_manifest, ubuntu_runtime):
        plan = _plan(redis_manifest, ubuntu_runtime)
        download = plan.get("source.redis-5.0.4.tar.gz")
        install = plan.get("source.install.0")
        assert isinstance(download, DownloadExtract)
        assert download.stage == "source"
        assert download.extract
        assert install.cwd == download.target_dir
        assert install.stage == "source_install"
        assert plan.get("source.apt.make").stage == "source_build"

    def test_empty_platform_plans_nothing(self):
        plan = _plan(_manifest({}), UBUNTU)
        assert plan.steps == []

    def test_pre_install_only(self):
        plan = _plan(_manifest({"pre_install": ["echo a"]}), UBUNTU)
        assert [s.kind for s in plan.steps] == ["command"]

    def test_duplicate_ids_get_suffix(self):
        plan = _plan(_manifest({"apt": ["curl", "curl"]}), UBUNTU)
        assert [s.id for s in plan.steps] == ["apt.curl", "apt.curl#2"]

    def test_plan_is_valid_dag(self, simple_manifest, windows_runtime):
        plan = _plan(simple_manifest, windows_runtime)
        assert validate_dag(plan.steps) == []
        assert [s.id for s in topological_order(plan.steps)] == [s.id for s in plan.steps]

    def test_to_dict(self, redis_manifest, ubuntu_runtime):
        data = _plan(redis_manifest, ubuntu_runtime).to_dict()
        assert data["total_steps"] == 9
        assert data["steps"][0]["label"] == "$ sudo add-apt-repository ppa:chris-lea/redis-server"


class TestPlannerDownloads:
    def test_scenario_windows_downloads(self, simple_manifest, windows_runtime):
        plan = _plan(simple_manifest, windows_runtime)
        downloads = plan.by_kind("download")
        assert len(downloads) == 7
        extracted = {d.filename for d in downloads if d.extract}
        assert extracted == {"clink-1.0.0a1.823d84.zip", "curl-7.64.1-win64-mingw.zip"}

    def test_downloads_are_independent(self, simple_manifest, windows_runtime):
        plan = _plan(simple_manifest, windows_runtime)
        downloads = plan.by_kind("download")
        assert all(d.depends_on == [] for d in downloads)
        install = plan.get("postgresql.install")
        assert set(install.depends_on) == {d.id for d in downloads}

    def test_target_dirs_unique_and_under_download_directory(self, simple_manifest, windows_runtime):
        downloads = _plan(simple_manifest, windows_runtime).by_kind("download")
        dirs = [d.target_dir for d in downloads]
        assert len(set(dirs)) == len(dirs)
        assert all(d.startswith("C:\\opt\\Downloads") for d in dirs)

    def test_install_prefix_only_with_install_all(self, simple_manifest, windows_runtime):
        downloads = _plan(simple_manifest, windows_runtime).by_kind("download")
        assert {d.install_prefix for d in downloads} == {"C:\\opt\\bin"}
        plan = _plan(_manifest({
            "install_prefix": "/opt/bin",
            "download": {"uri": "https://e.com/a.bin"},
        }), UBUNTU)
        assert plan.by_kind("download")[0].install_prefix is None

    def test_default_download_dir(self):
        plan = _plan(_manifest({"download": {"uri": "https://e.com/a.bin"}}), UBUNTU)
        assert plan.steps[0].target_dir.startswith(DOWNLOADS)

    def test_artifact_dir_stable(self, simple_manifest):
        artifact = simple_manifest.platforms["windows"].download[0]
        assert artifact_dir("/d", artifact) == artifact_dir("/d", artifact)
        assert artifact_dir("/d", artifact).startswith("/d/")

    def test_mirrors_of_one_file_get_separate_dirs(self):
        checksum = "ab" * 64
        plan = _plan(_manifest({"download": [
            {"uri": "https://mirror-a.example.com/tool.bin", "sha512": checksum},
            {"uri": "https://mirror-b.example.com/tool.bin", "sha512": checksum},
        ]}), UBUNTU)
        first, second = plan.by_kind("download")
        assert first.filename == second.filename == "tool.bin"
        assert first.target_dir != second.target_dir


class TestPlannerApplications:
    def test_application_steps(self, simple_manifest, windows_runtime):
        plan = _plan(simple_manifest, windows_runtime)
        app_steps = [s for s in plan.steps if s.application]
        assert [s.id for s in app_steps] == [
            "postgresql.install",
            "postgresql.user.awesome_user",
            "postgresql.database.awesome_db",
            "postgresql.env.RDBMS_URI",
            "redis.env.REDIS_URL",
        ]

    def test_install_step_fields(self, simple_manifest, windows_runtime):
        install = _plan(simple_manifest, windows_runtime).get("postgresql.install")
        assert isinstance(install, ApplicationInstall)
        assert install.strategies == ["docker", "native"]
        assert install.native_manager == "choco"
        assert install.version == ">9.6.4"
        assert install.features == ["postgis"]

    def test_skip_install_has_no_install_step(self, simple_manifest, ubuntu_runtime):
        plan = _plan(simple_manifest, ubuntu_runtime)
        assert plan.get("redis.install") is None
        env = plan.get("redis.env.REDIS_URL")
        assert isinstance(env, EnvBind)
        assert env.value_source == "configuration"
        assert env.fail_silently

    def test_env_bind_from_install_result(self, simple_manifest, ubuntu_runtime):
        env = _plan(simple_manifest, ubuntu_runtime).get("postgresql.env.RDBMS_URI")
        assert env.value_source == "install_result"
        assert env.install_step == "postgresql.install"

    def test_credential_kept_as_reference(self, simple_manifest, ubuntu_runtime):
        user = _plan(simple_manifest, ubuntu_runtime).get("postgresql.user.awesome_user")
        assert isinstance(user, UserProvision)
        assert user.credential == "$env_var"

    def test_database_after_owner(self, simple_manifest, ubuntu_runtime):
        plan = _plan(simple_manifest, ubuntu_runtime)
        db = plan.get("postgresql.database.awesome_db")
        assert isinstance(db, DatabaseProvision)
        assert "postgresql.user.awesome_user" in db.depends_on

    def test_cross_application_owner_deferred(self):
        manifest = _manifest({}, applications={
            "pg_a": {"databases": [{"name": "db1", "owner": "bob"}]},
            "pg_b": {"users": [{"name": "bob"}]},
        })
        plan = _plan(manifest, UBUNTU)
        ids = [s.id for s in plan.steps]
        assert ids.index("pg_b.user.bob") < ids.index("pg_a.database.db1")
        assert "pg_b.user.bob" in plan.get("pg_a.database.db1").depends_on

    def test_undeclared_owner_not_deferred(self):
        manifest = _manifest({}, applications={
            "pg": {"databases": [{"name": "db1", "owner": "postgres"}]},
        })
        assert [s.id for s in _plan(manifest, UBUNTU).steps] == ["pg.install", "pg.database.db1"]

    def test_app_without_anything_plans_nothing(self):
        manifest = _manifest({}, applications={"memcached": {"version": ">1.5", "fail_silently": True}})
        assert _plan(manifest, UBUNTU).steps == []

    def test_app_with_only_pkg_plans_install(self):
        plan = _plan(_manifest({}, applications={"memcached": {"pkg": "memcached"}}), UBUNTU)
        assert [s.kind for s in plan.steps] == ["application"]
        assert plan.steps[0].strategies == ["native"]

    def test_fail_silently_propagates(self, simple_manifest, ubuntu_runtime):
        plan = _plan(simple_manifest, ubuntu_runtime)
        assert all(not s.fail_silently for s in plan.steps if s.application == "postgresql")

    def test_strategy_chain_defaults(self):
        manifest = _manifest({"install_priority": ["docker"]}, applications={
            "a": {},
            "b": {"install_priority": ["native"]},
        })
        spec = manifest.platforms["ubuntu"]
        assert strategies_for(manifest.applications["a"], spec) == ["docker"]
        assert strategies_for(manifest.applications["b"], spec) == ["native"]

    def test_native_manager(self, redis_manifest):
        assert native_manager("ubuntu", redis_manifest.platforms["ubuntu"]) == "apt"
        assert native_manager("mac", redis_manifest.platforms["mac"]) == "brew"
        assert native_manager("windows", redis_manifest.platforms["windows"]) == "choco"

    def test_ports(self, simple_manifest, ubuntu_runtime):
        ports = _plan(simple_manifest, ubuntu_runtime).by_kind("port")
        assert [(p.protocol, p.port) for p in ports] == [("tcp", 80), ("tcp", 443)]
        assert all(isinstance(p, PortExpose) for p in ports)


class TestDag:
    def _steps(self):
        return [
            CommandStep(id="a", phase=1, command="x"),
            DownloadExtract(id="d1", phase=4, depends_on=["a"], uri="https://e/1", target_dir="/t", filename="1"),
            DownloadExtract(id="d2", phase=4, depends_on=["a"], uri="https://e/2", target_dir="/t", filename="2"),
            PackageManagerInstall(id="p", phase=2, depends_on=["d1", "d2"], manager="apt", package="x"),
        ]

    def test_ready_steps(self):
        steps = self._steps()
        assert [s.id for s in ready_steps(steps, set(), set())] == ["a"]
        assert [s.id for s in ready_steps(steps, {"a"}, {"a"})] == ["d1", "d2"]
        assert [s.id for s in ready_steps(steps, {"a", "d1"}, {"a", "d1", "d2"})] == []

    def test_validate_unknown_dependency(self):
        steps = [CommandStep(id="a", phase=1, command="x", depends_on=["zzz"])]
        assert validate_dag(steps) == ["Step 'a' depends on unknown step 'zzz'"]

    def test_validate_cycle(self):
        steps = [
            CommandStep(id="a", phase=1, command="x", depends_on=["b"]),
            CommandStep(id="b", phase=1, command="y", depends_on=["a"]),
        ]
        assert validate_dag(steps) == ["Dependency cycle detected in plan steps"]

    def test_validate_duplicate(self):
        steps = [CommandStep(id="a", phase=1, command="x"), CommandStep(id="a", phase=1, command="y")]
        assert "Duplicate step ID: a" in validate_dag(steps)

    def test_lock_safety(self):
        steps = self._steps()
        d1, d2, p = steps[1], steps[2], steps[3]
        assert enforce_lock_safety([d1, d2]) == [d1, d2]
        assert enforce_lock_safety([p, d1]) == [p]
        assert enforce_lock_safety([d1, p, d2]) == [d1]

    @pytest.mark.parametrize("stage,locked", [("pre_install", False), ("source_install", True)])
    def test_command_lock(self, stage, locked):
        assert needs_system_lock(CommandStep(id="c", phase=1, command="x", stage=stage)) is locked
