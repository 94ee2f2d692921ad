from .cli import main

main(prog_name="claptrap-listen")
