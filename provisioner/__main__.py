from provisioner.main import cli

cli()
