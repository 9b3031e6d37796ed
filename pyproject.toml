[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "promexport"
version = "0.7.1"
description = "Building blocks for exporting Prometheus samples as monitoring time series: shard queues, histogram conversion, lease handling and rule-result storage."
requires-python = ">=3.10"
dependencies = []
keywords = ["prometheus", "monitoring", "metrics", "histogram", "export", "lease"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Monitoring",
    "Typing :: Typed",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["promexport"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
