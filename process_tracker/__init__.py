"""Process tracker: templated multi-step workflows with lifecycle rules and dashboards."""
