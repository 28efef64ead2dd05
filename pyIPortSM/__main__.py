from pyIPortSM.cli import run

run()
