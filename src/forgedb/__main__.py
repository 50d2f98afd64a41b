from forgedb.cli import cli

cli(prog_name="forgedb")
