"""Instance bootstrap script generation.

The script is an ordered list of typed steps (install, clone, dependencies,
detect, build, run, proxy). Each step renders its own Jinja2 fragment; the
fragments are joined under a shared preamble into one bash script that runs
as the instance's user data.
"""

from __future__ import annotations

import shlex
from dataclasses import dataclass
from enum import Enum
from typing import Any, ClassVar

from jinja2 import Template

from shipyard.config.defaults import (
    ADMIN_USER,
    APP_DIR,
    APP_LOG_DIR,
    APP_VERIFY_ATTEMPTS,
    APP_VERIFY_INTERVAL,
    BREADCRUMB_HTTP_PATH,
    BREADCRUMB_PATH,
    DEPLOYMENT_LOG_PATH,
    HEALTH_CHECK_PATH,
    LOGS_HTTP_PATH,
    USER_DATA_LOG_PATH,
)
from shipyard.deploy.repository import clone_url
from shipyard.models.profile import Language, ProjectFlavor, ProjectProfile


class BootstrapPhase(str, Enum):
    """Breadcrumb values written to the instance's status file."""

    STARTING = "starting"
    INSTALLING = "installing"
    CLONING = "cloning"
    DEPENDENCIES = "installing_dependencies"
    BUILDING = "building"
    STARTING_SERVICE = "starting_service"
    CONFIGURING_PROXY = "configuring_nginx"
    COMPLETED = "completed"
    FAILED = "failed"


# Progress reported while a breadcrumb is current
BREADCRUMB_PROGRESS: dict[BootstrapPhase, int] = {
    BootstrapPhase.STARTING: 25,
    BootstrapPhase.INSTALLING: 30,
    BootstrapPhase.CLONING: 40,
    BootstrapPhase.DEPENDENCIES: 50,
    BootstrapPhase.BUILDING: 60,
    BootstrapPhase.STARTING_SERVICE: 75,
    BootstrapPhase.CONFIGURING_PROXY: 85,
    BootstrapPhase.COMPLETED: 95,
}

SERVICE_NAME = "app"
SERVICE_PATH = (
    f"{APP_DIR}/.venv/bin:/usr/local/cargo/bin:/usr/local/sbin:/usr/local/bin:"
    "/usr/sbin:/usr/bin:/sbin:/bin"
)

PREAMBLE_TEMPLATE = """\
#!/bin/bash
# Generated by shipyard for {{ repository_url }} ({{ branch }})
exec > >(tee -a {{ user_data_log }} | logger -t user-data -s 2>/dev/console) 2>&1

APP_DIR={{ app_dir }}
STATUS_FILE={{ breadcrumb_path }}
DEPLOY_LOG={{ deployment_log }}
export DEBIAN_FRONTEND=noninteractive
export HOME=${HOME:-/root}
export RUSTUP_HOME=/usr/local/rustup
export PATH={{ service_path }}

mkdir -p {{ app_log_dir }}
chmod 755 {{ app_log_dir }}

log() {
    echo "$(date -u +%Y-%m-%dT%H:%M:%SZ) $*" | tee -a "$DEPLOY_LOG"
}

breadcrumb() {
    echo "$1" > "$STATUS_FILE"
    chmod 644 "$STATUS_FILE"
    log "phase: $1"
}

fail() {
    log "ERROR: $*"
    breadcrumb {{ failed }}
    exit 1
}

breadcrumb {{ starting }}
"""

NGINX_TEMPLATE = """\
cat > /etc/nginx/sites-available/default << 'NGINX'
server {
    listen 80 default_server;
    listen [::]:80 default_server;
    server_name _;
{% if proxy_app %}

    add_header X-Frame-Options "SAMEORIGIN" always;
    add_header X-XSS-Protection "1; mode=block" always;
    add_header X-Content-Type-Options "nosniff" always;
    add_header Referrer-Policy "strict-origin-when-cross-origin" always;

    location / {
        proxy_pass http://127.0.0.1:{{ port }};
        proxy_http_version 1.1;
        proxy_set_header Upgrade $http_upgrade;
        proxy_set_header Connection 'upgrade';
        proxy_set_header Host $host;
        proxy_set_header X-Real-IP $remote_addr;
        proxy_set_header X-Forwarded-For $proxy_add_x_forwarded_for;
        proxy_set_header X-Forwarded-Proto $scheme;
        proxy_cache_bypass $http_upgrade;
        proxy_read_timeout 86400;
    }

    # Answered by the application itself; nginx returns 502 while it is down
    location = {{ health_path }} {
        access_log off;
        proxy_pass http://127.0.0.1:{{ port }}/;
        proxy_set_header Host $host;
        proxy_connect_timeout 5s;
        proxy_read_timeout 30s;
    }
{% endif %}

    location = {{ breadcrumb_http_path }} {
        access_log off;
        default_type text/plain;
        add_header Cache-Control "no-store";
        alias {{ breadcrumb_path }};
    }

    location = {{ logs_http_path }} {
        access_log off;
        default_type text/plain;
        add_header Cache-Control "no-store";
        alias {{ deployment_log }};
    }
}
NGINX
"""

PLACEHOLDER_SERVER = """\
const http = require('http');
const fs = require('fs');
const path = require('path');

const PORT = process.env.PORT || 3000;
const candidates = ['index.html', 'build/index.html', 'dist/index.html', 'public/index.html'];

const server = http.createServer((req, res) => {
    if (req.url === '/' || req.url === '/index.html') {
        const found = candidates.find((file) => fs.existsSync(file));
        res.writeHead(200, { 'Content-Type': 'text/html' });
        if (found) {
            res.end(fs.readFileSync(found, 'utf8'));
        } else {
            res.end('<!DOCTYPE html><html><head><title>App running</title></head>'
                + '<body><h1>Your app is running</h1>'
                + '<p>No entry point was detected; this is a placeholder page.</p>'
                + '</body></html>');
        }
        return;
    }
    const filePath = path.join(__dirname, path.normalize(req.url));
    if (filePath.startsWith(__dirname) && fs.existsSync(filePath) && fs.statSync(filePath).isFile()) {
        res.writeHead(200);
        res.end(fs.readFileSync(filePath));
    } else {
        res.writeHead(404, { 'Content-Type': 'text/html' });
        res.end('<h1>404 - File Not Found</h1>');
    }
});

server.listen(PORT, () => console.log(`Placeholder server running on port ${PORT}`));
"""


def _render(source: str, **context: Any) -> str:
    template = Template(source, trim_blocks=True, lstrip_blocks=True)
    return template.render(**context).rstrip() + "\n"


def _nginx_config(*, proxy_app: bool, port: int = 0) -> str:
    return _render(
        NGINX_TEMPLATE,
        proxy_app=proxy_app,
        port=port,
        health_path=HEALTH_CHECK_PATH,
        breadcrumb_http_path=BREADCRUMB_HTTP_PATH,
        logs_http_path=LOGS_HTTP_PATH,
        breadcrumb_path=BREADCRUMB_PATH,
        deployment_log=DEPLOYMENT_LOG_PATH,
    )


@dataclass(frozen=True)
class BootstrapStep:
    """A single renderable section of the bootstrap script."""

    name: ClassVar[str] = "step"
    template: ClassVar[str] = ""

    def context(self) -> dict[str, Any]:
        """Return the template variables for this step."""
        return {}

    def render(self) -> str:
        """Render this step as a bash fragment."""
        body = _render(self.template, phase=BootstrapPhase, **self.context())
        return f"# --- {self.name} ---\n{body}"


@dataclass(frozen=True)
class InstallStep(BootstrapStep):
    """Install base packages, nginx and the language runtime."""

    language: Language = Language.UNKNOWN

    name: ClassVar[str] = "install"
    template: ClassVar[str] = """\
breadcrumb {{ phase.INSTALLING.value }}
apt-get update -y || fail "apt-get update failed"
apt-get install -y git curl build-essential nginx || fail "base packages failed"
curl -fsSL https://deb.nodesource.com/setup_18.x | bash - || fail "Node.js repository setup failed"
apt-get install -y nodejs || fail "Node.js install failed"
npm install -g serve || log "serve install failed"
{% if language == "python" %}
apt-get install -y python3 python3-pip python3-venv || fail "Python install failed"
{% elif language == "go" %}
apt-get install -y golang-go || fail "Go install failed"
{% elif language == "rust" %}
curl -sSf https://sh.rustup.rs | RUSTUP_HOME=/usr/local/rustup CARGO_HOME=/usr/local/cargo sh -s -- -y || fail "Rust install failed"
chmod -R a+rx /usr/local/rustup /usr/local/cargo
{% elif language == "php" %}
apt-get install -y php-cli php-mbstring php-xml unzip composer || fail "PHP install failed"
{% endif %}
node --version >> "$DEPLOY_LOG" 2>&1

# Publish breadcrumbs before the application proxy exists
{{ nginx_status_only }}
systemctl enable nginx
systemctl restart nginx || log "nginx failed to start"
"""

    def context(self) -> dict[str, Any]:
        return {
            "language": self.language.value,
            "nginx_status_only": _nginx_config(proxy_app=False).rstrip(),
        }


@dataclass(frozen=True)
class CloneStep(BootstrapStep):
    """Clone the repository branch into the application directory."""

    repository_url: str = ""
    branch: str = "main"

    name: ClassVar[str] = "clone"
    template: ClassVar[str] = """\
breadcrumb {{ phase.CLONING.value }}
log "Cloning {{ repository_url }} ({{ branch }})"
rm -rf "$APP_DIR"
git clone --depth 1 --branch {{ branch_arg }} {{ url_arg }} "$APP_DIR" \\
    || fail "Failed to clone {{ repository_url }}"
cd "$APP_DIR" || fail "Application directory missing"
"""

    def context(self) -> dict[str, Any]:
        return {
            "repository_url": self.repository_url,
            "branch": self.branch,
            "url_arg": shlex.quote(self.repository_url),
            "branch_arg": shlex.quote(self.branch),
        }


@dataclass(frozen=True)
class DependenciesStep(BootstrapStep):
    """Install declared dependencies with the project's package manager."""

    language: Language = Language.UNKNOWN
    package_manager: str = "npm"

    name: ClassVar[str] = "dependencies"
    template: ClassVar[str] = """\
breadcrumb {{ phase.DEPENDENCIES.value }}
{% if language == "node" %}
{% if package_manager == "yarn" %}
npm install -g yarn || fail "yarn install failed"
{% elif package_manager == "pnpm" %}
npm install -g pnpm || fail "pnpm install failed"
{% endif %}
if [ -f package.json ]; then
    {{ package_manager }} install || fail "Dependency install failed"
fi
{% elif language == "python" %}
python3 -m venv "$APP_DIR/.venv" || fail "virtualenv creation failed"
if [ -f requirements.txt ]; then
    "$APP_DIR/.venv/bin/pip" install -r requirements.txt || fail "Dependency install failed"
elif [ -f pyproject.toml ]; then
    "$APP_DIR/.venv/bin/pip" install . || fail "Dependency install failed"
fi
{% elif language == "go" %}
if [ -f go.mod ]; then
    go mod download || fail "Dependency download failed"
fi
{% elif language == "rust" %}
if [ -f Cargo.toml ]; then
    cargo fetch || fail "Dependency fetch failed"
fi
{% elif language == "php" %}
if [ -f composer.json ]; then
    composer install --no-dev --no-interaction || fail "Dependency install failed"
fi
{% else %}
log "No dependency manifest detected"
{% endif %}
"""

    def context(self) -> dict[str, Any]:
        return {
            "language": self.language.value,
            "package_manager": self.package_manager,
        }


@dataclass(frozen=True)
class DetectStep(BootstrapStep):
    """Select the start command, synthesizing an entry point if none exists."""

    flavor: ProjectFlavor = ProjectFlavor.UNRECOGNIZED
    framework: str = "Unknown"
    start_command: str | None = None
    dev_command: str | None = None

    name: ClassVar[str] = "detect"
    template: ClassVar[str] = """\
log "Detected {{ framework }} ({{ flavor }})"
{% if start_command %}
START_CMD={{ start_arg }}
{% else %}
if [ ! -f package.json ]; then
    log "No package.json found, creating a minimal one"
    cat > package.json << 'PKG'
{
  "name": "deployed-app",
  "version": "1.0.0",
  "private": true,
  "scripts": {}
}
PKG
fi
MAIN_FILE=""
for candidate in index.js app.js server.js main.js; do
    if [ -f "$candidate" ]; then
        MAIN_FILE="$candidate"
        break
    fi
done
if [ -z "$MAIN_FILE" ]; then
    MAIN_FILE="index.js"
    log "No entry point found, generating placeholder server"
    cat > "$MAIN_FILE" << 'SERVER'
{{ placeholder }}
SERVER
fi
npm pkg set scripts.start="node $MAIN_FILE"
START_CMD="npm start"
{% endif %}
DEV_CMD={{ dev_arg }}
"""

    def context(self) -> dict[str, Any]:
        return {
            "flavor": self.flavor.value,
            "framework": self.framework,
            "start_command": self.start_command,
            "start_arg": shlex.quote(self.start_command or ""),
            "dev_arg": shlex.quote(self.dev_command or ""),
            "placeholder": PLACEHOLDER_SERVER.rstrip(),
        }


@dataclass(frozen=True)
class BuildStep(BootstrapStep):
    """Build when required, falling back to the dev command on failure."""

    build_command: str | None = None

    name: ClassVar[str] = "build"
    template: ClassVar[str] = """\
{% if build_command %}
breadcrumb {{ phase.BUILDING.value }}
if {{ build_command }}; then
    log "Build succeeded"
else
    log "Build failed"
    if [ -n "$DEV_CMD" ]; then
        log "Falling back to development server: $DEV_CMD"
        START_CMD="$DEV_CMD"
    fi
fi
{% else %}
log "No build required"
{% endif %}
"""

    def context(self) -> dict[str, Any]:
        return {"build_command": self.build_command}


@dataclass(frozen=True)
class RunStep(BootstrapStep):
    """Run the application under systemd and wait until it answers."""

    port: int = 3000

    name: ClassVar[str] = "run"
    template: ClassVar[str] = """\
breadcrumb {{ phase.STARTING_SERVICE.value }}
chown -R {{ user }}:{{ user }} "$APP_DIR"
touch {{ app_log_dir }}/app.log {{ app_log_dir }}/app-error.log
chown {{ user }}:{{ user }} {{ app_log_dir }}/app.log {{ app_log_dir }}/app-error.log
cat > /etc/systemd/system/{{ service }}.service << UNIT
[Unit]
Description=Application deployed by shipyard
After=network.target
StartLimitIntervalSec=0

[Service]
Type=simple
User={{ user }}
WorkingDirectory=$APP_DIR
ExecStart=/bin/bash -lc "$START_CMD"
Restart=always
RestartSec=10
Environment=NODE_ENV=production
Environment=PORT={{ port }}
Environment=PATH={{ service_path }}
Environment=RUSTUP_HOME=/usr/local/rustup
StandardOutput=append:{{ app_log_dir }}/app.log
StandardError=append:{{ app_log_dir }}/app-error.log

[Install]
WantedBy=multi-user.target
UNIT
systemctl daemon-reload
systemctl enable {{ service }}
systemctl restart {{ service }} || fail "Service failed to start"
log "Started: $START_CMD"

APP_UP=""
for attempt in $(seq 1 {{ verify_attempts }}); do
    if curl -fsS -o /dev/null "http://127.0.0.1:{{ port }}/"; then
        APP_UP=1
        break
    fi
    sleep {{ verify_interval }}
done
if [ -z "$APP_UP" ]; then
    systemctl status {{ service }} --no-pager >> "$DEPLOY_LOG" 2>&1
    tail -n 50 {{ app_log_dir }}/app-error.log >> "$DEPLOY_LOG" 2>&1
    fail "Application did not answer on port {{ port }}"
fi
log "Application is answering on port {{ port }}"
"""

    def context(self) -> dict[str, Any]:
        return {
            "port": self.port,
            "verify_attempts": APP_VERIFY_ATTEMPTS,
            "verify_interval": APP_VERIFY_INTERVAL,
            "user": ADMIN_USER,
            "service": SERVICE_NAME,
            "service_path": SERVICE_PATH,
            "app_log_dir": APP_LOG_DIR,
        }


@dataclass(frozen=True)
class ProxyStep(BootstrapStep):
    """Map port 80 to the application with nginx."""

    port: int = 3000

    name: ClassVar[str] = "proxy"
    template: ClassVar[str] = """\
breadcrumb {{ phase.CONFIGURING_PROXY.value }}
{{ nginx_config }}
if nginx -t; then
    systemctl restart nginx
    breadcrumb {{ phase.COMPLETED.value }}
else
    fail "nginx configuration test failed"
fi
"""

    def context(self) -> dict[str, Any]:
        return {"nginx_config": _nginx_config(proxy_app=True, port=self.port).rstrip()}


def build_bootstrap_steps(
    repository_url: str, branch: str, profile: ProjectProfile
) -> list[BootstrapStep]:
    """Build the ordered bootstrap steps for a project.

    Raises:
        InputValidationError: If the repository reference is malformed
    """
    url = clone_url(repository_url)
    return [
        InstallStep(language=profile.language),
        CloneStep(repository_url=url, branch=branch),
        DependenciesStep(
            language=profile.language, package_manager=profile.package_manager
        ),
        DetectStep(
            flavor=profile.flavor,
            framework=profile.framework,
            start_command=profile.start_command,
            dev_command=profile.dev_command,
        ),
        BuildStep(build_command=profile.build_command),
        RunStep(port=profile.port),
        ProxyStep(port=profile.port),
    ]


def render_bootstrap_script(
    steps: list[BootstrapStep], *, repository_url: str, branch: str
) -> str:
    """Join rendered steps under the shared preamble."""
    preamble = _render(
        PREAMBLE_TEMPLATE,
        repository_url=repository_url,
        branch=branch,
        user_data_log=USER_DATA_LOG_PATH,
        app_dir=APP_DIR,
        app_log_dir=APP_LOG_DIR,
        breadcrumb_path=BREADCRUMB_PATH,
        deployment_log=DEPLOYMENT_LOG_PATH,
        service_path=SERVICE_PATH,
        starting=BootstrapPhase.STARTING.value,
        failed=BootstrapPhase.FAILED.value,
    )
    sections = [preamble] + [step.render() for step in steps]
    return "\n".join(sections)


def generate_bootstrap_script(
    repository_url: str, branch: str, profile: ProjectProfile
) -> str:
    """Generate the instance bootstrap script.

    Deterministic for a given (repository, branch, profile).

    Args:
        repository_url: Repository reference (owner/name or GitHub URL)
        branch: Branch to deploy
        profile: Detected project profile

    Returns:
        Bash script suitable for instance user data

    Example:
        >>> script = generate_bootstrap_script("acme/blog", "main", profile)
        >>> script.startswith("#!/bin/bash")
        True
    """
    steps = build_bootstrap_steps(repository_url, branch, profile)
    return render_bootstrap_script(
        steps, repository_url=clone_url(repository_url), branch=branch
    )
