from tierdeploy.cli.main import main

main()
