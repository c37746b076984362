"""Files rendered for the instance: startup script, proxy config, service unit."""

import json

from tierdeploy.config.models import DeploymentConfig

STARTUP_MARKER = "/var/log/startup-complete"

STARTUP_SCRIPT = """#!/bin/bash
set -e
if [ -f {marker} ]; then
  exit 0
fi
export DEBIAN_FRONTEND=noninteractive
apt-get update
apt-get install -y curl debian-keyring debian-archive-keyring apt-transport-https fail2ban
curl -1sLf 'https://dl.cloudsmith.io/public/caddy/stable/gpg.key' \\
  | gpg --dearmor -o /usr/share/keyrings/caddy-stable-archive-keyring.gpg
curl -1sLf 'https://dl.cloudsmith.io/public/caddy/stable/debian.deb.txt' \\
  > /etc/apt/sources.list.d/caddy-stable.list
curl -fsSL https://deb.nodesource.com/setup_20.x | bash -
apt-get update
apt-get install -y caddy nodejs
fallocate -l 1G /swapfile && chmod 600 /swapfile && mkswap /swapfile && swapon /swapfile
echo '/swapfile none swap sw 0 0' >> /etc/fstab
touch {marker}
"""

CADDYFILE = """{{
  auto_https disable_redirects
}}

:80 {{
  redir https://{{host}}{{uri}} permanent
}}

:443 {{
  tls internal {{
    on_demand
  }}
  reverse_proxy localhost:{port}
  log {{
    output file /var/log/caddy/access.log
  }}
}}
"""

SERVICE_UNIT = """[Unit]
Description={service} proxy router
After=network-online.target
Wants=network-online.target

[Service]
Type=simple
User={user}
WorkingDirectory={install_dir}
ExecStartPre=/bin/bash -c 'echo API_KEY=$(gcloud secrets versions access latest --secret={secret}) > {install_dir}/.env'
EnvironmentFile=-{install_dir}/.env
ExecStart=/usr/bin/node {install_dir}/index.js
Restart=on-failure
RestartSec=5

[Install]
WantedBy=multi-user.target
"""

FAIL2BAN_JAIL = """[sshd]
enabled = true
maxretry = 5
bantime = 3600
"""

LOGROTATE = """/var/log/caddy/*.log {{
  daily
  rotate 7
  compress
  missingok
  notifempty
}}

/var/log/{service}/*.log {{
  daily
  rotate 7
  compress
  missingok
  notifempty
}}
"""


def render_startup_script(config: DeploymentConfig) -> str:
    return STARTUP_SCRIPT.format(marker=STARTUP_MARKER)


def render_caddyfile(config: DeploymentConfig) -> str:
    return CADDYFILE.format(port=config.application.port)


def render_service_unit(config: DeploymentConfig, secret_name: str) -> str:
    app = config.application
    return SERVICE_UNIT.format(
        service=app.service_name,
        user=app.user,
        install_dir=app.install_dir,
        secret=secret_name,
    )


def render_app_config(config: DeploymentConfig, secret_name: str) -> str:
    """Application settings; the key itself is read from the secret at start."""
    return json.dumps({
        "host": "127.0.0.1",
        "port": config.application.port,
        "apiKeySecret": secret_name,
        "project": config.project_id,
        "environment": config.environment,
        "healthPath": config.application.health_path,
    }, indent=2)


def render_logrotate(config: DeploymentConfig) -> str:
    return LOGROTATE.format(service=config.application.service_name)
