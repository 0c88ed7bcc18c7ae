[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "wego"
version = "0.1.0"
description = "Command-line tool that sets up GitOps automation for applications on a Kubernetes cluster using Flux"
requires-python = ">=3.10"
dependencies = [
    "pyyaml",
]
keywords = ["gitops", "flux", "kubernetes", "kustomize", "helm", "deployment"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Console",
    "Environment :: Web Environment",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Build Tools",
    "Topic :: System :: Systems Administration",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
wego = "wego.cli:main"
wego-ui = "wego.ui:main"

[tool.hatch.build.targets.wheel]
packages = ["wego"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
