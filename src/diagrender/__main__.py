from diagrender.cli import cli

cli()
