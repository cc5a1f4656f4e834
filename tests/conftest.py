pytest_plugins = [
    "tests.fixtures.aws_fixtures",
    "tests.fixtures.runner_fixtures",
]
