"""
Unit tests for production setup and configuration generation.
"""

import stat

import pytest
import yaml

from shivish_deploy.errors import PrerequisiteError
from shivish_deploy.generators import parse_env
from shivish_deploy.workflows import prepare_directories, setup_production, write_configuration
from tests.fakes import FakeResponse


class TestWriteConfiguration:
    """Generated files land under the target directory"""

    def test_writes_every_file(self, ctx):
        written = write_configuration(ctx)
        root = ctx.target_dir

        expected = [
            root / "docker-compose-production.yml",
            root / "docker-compose.yml",
            root / "configs" / "nginx" / "nginx-production.conf",
            root / "configs" / "nginx" / "nginx.conf",
            root / "configs" / "clickhouse" / "config.xml",
            root / "configs" / "clickhouse" / "users.xml",
            root / "configs" / "prometheus" / "prometheus.yml",
            root / ".env",
        ]
        assert written == expected
        assert all(path.exists() for path in expected)
        assert stat.S_IMODE((root / ".env").stat().st_mode) == 0o600

    def test_production_and_placeholder_layouts(self, ctx):
        write_configuration(ctx)

        production = yaml.safe_load((ctx.target_dir / "docker-compose-production.yml").read_text())
        placeholder = yaml.safe_load((ctx.target_dir / "docker-compose.yml").read_text())
        assert production["services"]["auth-service"]["image"] == "shivish-auth-service"
        assert placeholder["services"]["auth-service"]["image"] == "nginx:alpine"

    def test_keeps_installed_nginx_and_clickhouse_config(self, ctx):
        nginx_conf = ctx.settings.nginx_dir / "nginx.conf"
        users_xml = ctx.settings.clickhouse_config_dir / "users.xml"
        nginx_conf.parent.mkdir(parents=True)
        users_xml.parent.mkdir(parents=True)
        nginx_conf.write_text("# TLS config from secure\n")
        users_xml.write_text("<clickhouse/>")

        written = write_configuration(ctx)

        assert nginx_conf.read_text() == "# TLS config from secure\n"
        assert users_xml.read_text() == "<clickhouse/>"
        assert nginx_conf not in written
        assert (ctx.settings.nginx_dir / "nginx-production.conf").exists()

    def test_existing_env_only_gains_missing_keys(self, ctx):
        env = ctx.target_dir / ".env"
        env.write_text("RAZORPAY_KEY_ID=rzp_live_123\nDB_PASSWORD=rotated\n")

        write_configuration(ctx)

        values = parse_env(env.read_text())
        assert values["RAZORPAY_KEY_ID"] == "rzp_live_123"
        assert values["DB_PASSWORD"] == "rotated"
        assert values["REDIS_HOST"] == "redis"
        assert env.read_text().startswith("RAZORPAY_KEY_ID=rzp_live_123\nDB_PASSWORD=rotated\n")


class TestPrepareDirectories:
    def test_directories_and_ownership(self, ctx, runner):
        prepare_directories(ctx)

        for name in ("postgres", "redis", "clickhouse", "minio", "grafana"):
            assert (ctx.settings.data_dir / name).is_dir()
        assert (ctx.settings.logs_dir / "clickhouse").is_dir()
        assert (ctx.settings.ssl_dir).is_dir()
        assert (ctx.target_dir / "backups").is_dir()

        chowns = {call.argv[2]: call.argv[3] for call in runner.calls_matching("chown")}
        assert chowns["999:999"].endswith("postgres")
        assert chowns["472:472"].endswith("grafana")
        assert chowns["1001:1001"].endswith("minio")
        assert all(call.sudo for call in runner.calls_matching("chown"))


class TestSetupProduction:
    """End-to-end setup with the fakes"""

    def test_requires_target_dir(self, settings, ctx):
        ctx.settings = settings.model_copy(update={"target_dir": settings.target_dir / "missing"})

        with pytest.raises(PrerequisiteError, match="does not exist"):
            setup_production(ctx)

    def test_skip_build(self, ctx, runner, session, output):
        session.add("http://localhost:8081/health", FakeResponse(200))

        report = setup_production(ctx, skip_build=True)

        assert runner.ran("docker-compose", "-f", "docker-compose.yml", "down")
        assert runner.ran("docker-compose", "-f", "docker-compose-production.yml", "config", "-q")
        assert runner.ran("docker-compose", "-f", "docker-compose-production.yml", "up", "-d")
        assert not runner.ran("docker", "build")
        assert len(report.results) == 11 + 4
        assert report.results[0].healthy
        assert "Skipping microservice builds" in output()
        assert "not responding yet" in output()

    def test_config_written_before_start(self, ctx, runner):
        setup_production(ctx, skip_build=True)

        commands = [" ".join(argv) for argv in runner.commands]
        config_index = next(i for i, c in enumerate(commands) if c.endswith("config -q"))
        up_index = next(i for i, c in enumerate(commands) if c.endswith("up -d"))
        chown_index = next(i for i, c in enumerate(commands) if c.startswith("chown"))
        assert config_index < chown_index < up_index

    def test_builds_every_service(self, ctx, runner):
        runner.available.add("go")
        ctx.settings.microservices_dir.mkdir()

        setup_production(ctx)

        builds = runner.calls_matching("docker", "build")
        assert len(builds) == 11
        assert {call.argv[3] for call in builds} == {f"shivish-{s.name}" for s in ctx.stack.microservices}

    def test_build_needs_microservices_dir(self, ctx):
        with pytest.raises(PrerequisiteError, match="Microservices directory not found"):
            setup_production(ctx)
